"""Bubspubs signaling coordinator for shared watch rooms."""

__version__ = "0.1.0"
