"""Chat-completion client and response parsing."""
