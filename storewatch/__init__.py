"""Storewatch - catalog change monitoring."""

__version__ = "1.0.0"
