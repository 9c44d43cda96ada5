"""Adaptive mastery engine for typing-based spelling practice."""

__version__ = "0.1.0"
