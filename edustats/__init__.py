"""Collect US educational statistics into SQLite and write JSON assets for a static site."""

__version__ = "1.0.0"