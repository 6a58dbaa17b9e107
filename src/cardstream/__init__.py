"""Ordered streaming ingestion of generated design elements."""

__version__ = "0.1.0"
