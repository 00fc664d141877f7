"""
Run model: one execution of the discovery pipeline.

``since_date`` records the cutoff the run used; the latest successful run's
start time becomes the next run's default cutoff.
"""

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Run(Base):
    """Model for pipeline run records."""

    __tablename__ = "runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    command: Mapped[str] = mapped_column(String(20), nullable=False, default="run")

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    since_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Counts
    discovered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    succeeded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", index=True)

    errors: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint(
            "status IN ('running', 'completed', 'partial', 'failed')",
            name="check_run_status",
        ),
    )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
