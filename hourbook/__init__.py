"""Hourbook - time tracking with invoicing and a versioned SQLite store."""

__version__ = "0.1.0"
