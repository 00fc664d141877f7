"""
Database repositories package.

Provides repository pattern implementation for database operations.
"""

from .base import BaseRepository
from .rfp_repository import RfpRepository

__all__ = [
    "BaseRepository",
    "RfpRepository",
]
