"""Offline agent for the saved-locations application."""

__version__ = "0.1.0"
