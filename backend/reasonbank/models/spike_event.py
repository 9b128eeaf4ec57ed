"""Append-only firing log used for spike-rate statistics."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from reasonbank.models.base import Base, UUIDMixin


class SpikeEventLog(Base, UUIDMixin):
    __tablename__ = "spike_events"

    pattern_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("reasoning_patterns.id", ondelete="CASCADE"),
        nullable=False,
    )

    domain: Mapped[str] = mapped_column(String(100), nullable=False)

    fired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    is_source: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_spike_events_domain_fired", "domain", "fired_at"),
        Index("ix_spike_events_pattern", "pattern_id"),
    )
