"""
FitResultRecord model for stored scoring outcomes.

The tier column is written from the score at save time so reports can filter
on it; it is always recomputed from the percentage when a result is loaded.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class FitResultRecord(Base):
    """Model for opportunity fit scores."""

    __tablename__ = "fit_results"

    opportunity_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("opportunities.id", ondelete="CASCADE"),
        primary_key=True,
    )

    total_score: Mapped[int] = mapped_column(Integer, nullable=False)

    max_score: Mapped[int] = mapped_column(Integer, nullable=False)

    percentage: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    tier: Mapped[str] = mapped_column(String(10), nullable=False, index=True)

    breakdown: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    advantages: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    red_flags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    reasoning: Mapped[str] = mapped_column(Text, nullable=False, default="")

    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    narrative: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    opportunity: Mapped["Opportunity"] = relationship("Opportunity", back_populates="fit_result")

    def __repr__(self) -> str:
        return f"<FitResultRecord(opportunity_id={self.opportunity_id}, percentage={self.percentage}, tier={self.tier})>"
