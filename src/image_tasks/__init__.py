"""Asynchronous image resize tasks."""

__version__ = "0.1.0"
