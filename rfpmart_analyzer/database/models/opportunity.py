"""
Opportunity model for discovered RFP listings.

The primary key is the listing id, so re-discovering a listing updates the
same row instead of creating a duplicate.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy import CheckConstraint, Date, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class Opportunity(Base):
    """Model for RFP opportunities."""

    __tablename__ = "opportunities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    title: Mapped[str] = mapped_column(Text, nullable=False)

    detail_ref: Mapped[str] = mapped_column(String(1000), nullable=False)

    download_ref: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    posted_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    source: Mapped[str] = mapped_column(String(20), nullable=False, default="listing")

    # Processing state
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="discovered", index=True)

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    documents: Mapped[List["DocumentText"]] = relationship(
        "DocumentText",
        back_populates="opportunity",
        cascade="all, delete-orphan",
        order_by="DocumentText.position",
    )

    fit_result: Mapped[Optional["FitResultRecord"]] = relationship(
        "FitResultRecord",
        back_populates="opportunity",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('discovered', 'acquired', 'scored', 'failed')",
            name="check_opportunity_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Opportunity(id={self.id}, title={self.title[:40]!r}, status={self.status})>"
