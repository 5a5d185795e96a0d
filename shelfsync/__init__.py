"""Shelfsync - a book catalog kept in sync across viewers in real time."""

__version__ = "0.1.0"
