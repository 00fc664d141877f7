"""
DocumentText model: extracted text of one document of an opportunity.

Raw bytes are never stored; only the normalized text and its counts.
"""

from typing import Optional

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class DocumentText(Base):
    """Model for extracted document text."""

    __tablename__ = "document_texts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    opportunity_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("opportunities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Order within the corpus
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    filename: Mapped[str] = mapped_column(String(500), nullable=False)

    format: Mapped[str] = mapped_column(String(20), nullable=False)

    text: Mapped[str] = mapped_column(Text, nullable=False)

    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    char_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    opportunity: Mapped["Opportunity"] = relationship("Opportunity", back_populates="documents")
