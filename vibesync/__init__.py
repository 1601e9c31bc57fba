"""vibesync - local message cache and sync engine for the vibe tools."""

__version__ = "0.4.0"
