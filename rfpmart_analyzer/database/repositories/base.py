"""
Base repository class.

Lookups by primary key shared by the repositories.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.base import Base

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Primary-key get, count and delete for one model."""

    def __init__(self, model: Type[ModelType], session: Session):
        self.model = model
        self.session = session

    def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Get model instance by primary key."""
        try:
            return self.session.get(self.model, id)
        except Exception as e:
            logger.error(f"Error getting {self.model.__name__} by ID {id}: {e}")
            raise

    def count(self) -> int:
        try:
            return self.session.execute(select(func.count()).select_from(self.model)).scalar_one()
        except Exception as e:
            logger.error(f"Error counting {self.model.__name__}: {e}")
            raise

    def delete(self, id: Any) -> bool:
        """Delete by primary key; False when nothing matched."""
        try:
            instance = self.get_by_id(id)
            if instance is None:
                return False
            self.session.delete(instance)
            self.session.flush()
            logger.debug(f"Deleted {self.model.__name__} with ID: {id}")
            return True
        except Exception as e:
            logger.error(f"Error deleting {self.model.__name__} with ID {id}: {e}")
            raise
