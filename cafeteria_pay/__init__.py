"""Payment sessions and webhook reconciliation for the school cafeteria."""

__version__ = "1.0.0"
