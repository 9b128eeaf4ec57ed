"""External quality feedback (immutable).

Feedback ids are assigned by the external scorer and may be any string.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from reasonbank.models.base import Base, generate_uuid
from reasonbank.models.reasoning_trace import EXTERNAL_ID_LENGTH


class QualityFeedback(Base):
    __tablename__ = "quality_feedback"

    id: Mapped[str] = mapped_column(
        String(EXTERNAL_ID_LENGTH),
        primary_key=True,
        default=generate_uuid,
    )

    request_id: Mapped[str] = mapped_column(String(200), nullable=False)

    score: Mapped[float] = mapped_column(Float, nullable=False)

    automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_quality_feedback_request_id", "request_id"),)
