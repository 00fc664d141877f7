"""
Database models for the RFP Mart analyzer.

This package contains all SQLAlchemy model definitions for the application.
"""

from .base import Base
from .document_text import DocumentText
from .fit_result import FitResultRecord
from .opportunity import Opportunity
from .run import Run

__all__ = [
    "Base",
    "Run",
    "Opportunity",
    "DocumentText",
    "FitResultRecord",
]
