"""Bulk, repeatable export of archived form submissions to CSV."""

__version__ = "1.0.0"
