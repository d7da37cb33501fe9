"""calvault: offline Google Calendar archive."""

__version__ = "0.1.0"
