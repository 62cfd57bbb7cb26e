"""promptvault - a personal library for AI prompts."""

__version__ = "0.1.0"
