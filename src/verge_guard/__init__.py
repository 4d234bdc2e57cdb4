"""Guarded system settings for a proxy client."""

__version__ = "0.1.0"
