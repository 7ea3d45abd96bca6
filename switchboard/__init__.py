"""switchboard: chat bot with hot-reloaded text commands."""

__version__ = "1.0.0"
