"""Versioned remote state storage with fenced distributed locking."""

__version__ = "0.1.0"
