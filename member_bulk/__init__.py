"""Member directory bulk reconciliation service."""

__version__ = "0.1.0"
