"""Asynchronous batch article generation queue."""

__version__ = "0.1.0"
