"""System prompts stored as Markdown."""
