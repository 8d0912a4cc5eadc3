"""Availability & booking engine for provider/client scheduling."""

__version__ = "0.1.0"
