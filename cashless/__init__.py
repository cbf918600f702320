"""Stored-value order settlement service."""

__version__ = "1.0.0"
