"""
Persistence for listings, extracted text, fit results and runs.
"""

from .connection import close_database_connections, get_db, get_db_session, get_engine, init_database
from .repositories import RfpRepository

__all__ = [
    "get_engine",
    "get_db_session",
    "get_db",
    "init_database",
    "close_database_connections",
    "RfpRepository",
]
