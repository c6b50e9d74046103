"""Web API hosting the AI operations and practice sessions."""
