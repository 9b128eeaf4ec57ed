"""Directed pattern-to-pattern links.

Rebuilt by the trajectory link builder. Upserted by (source_id, target_id);
never duplicated. A rebuild refreshes weight and co_occurrences only, so the
spike-timing plasticity state survives it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from reasonbank.models.base import Base, TimestampMixin, UUIDMixin


class PatternLink(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "pattern_links"

    source_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("reasoning_patterns.id", ondelete="CASCADE"),
        nullable=False,
    )

    target_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("reasoning_patterns.id", ondelete="CASCADE"),
        nullable=False,
    )

    weight: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        doc="Normalized co-occurrence in (0, 1]",
    )

    co_occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    plasticity_weight: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=1.0,
        doc="Spike-timing multiplier on weight, bounded by PLASTICITY_MIN/MAX",
    )

    spike_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_activation: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ux_pattern_links_source_target", "source_id", "target_id", unique=True),
        Index("ix_pattern_links_target", "target_id"),
    )
