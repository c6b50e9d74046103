"""Mate AI practice engine."""

__version__ = "0.1.0"
