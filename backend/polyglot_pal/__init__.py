"""Polyglot Pal: a conversational language tutor backed by Gemini."""

__version__ = "0.3.0"
