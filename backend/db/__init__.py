"""
Database Layer
Durable rules, evaluation log and alerts.
"""

from .sqlite import SQLiteStorage, get_storage

__all__ = ["SQLiteStorage", "get_storage"]
