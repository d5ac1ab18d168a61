"""Resolve media page URLs and deliver them by redirect, proxy or on-the-fly remux."""

__version__ = "1.0.0"
