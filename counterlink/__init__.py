"""Counterlink: keeps one integer counter in sync between two paired peers."""

__version__ = "0.1.0"
