"""
Database module for the quote engine.
Provides SQLite storage for quotes and the activity log with async support.
"""

from .connection import DatabaseManager, default_db_url
from .models import Base, QuoteDB, ServiceItemDB, ActivityLogDB
from .operations import SQLQuoteStorage, SQLActivityLog

__all__ = [
    'DatabaseManager',
    'default_db_url',
    'Base',
    'QuoteDB',
    'ServiceItemDB',
    'ActivityLogDB',
    'SQLQuoteStorage',
    'SQLActivityLog',
]
