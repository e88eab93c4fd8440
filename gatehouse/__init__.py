"""Gatehouse: authentication and access control for async Python services."""

__version__ = "0.1.0"
