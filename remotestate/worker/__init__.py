"""Background workers."""

from .sweeper import LockSweeper

__all__ = ["LockSweeper"]
