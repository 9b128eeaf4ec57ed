"""Reasoning traces.

Append-only audit log of completed reasoning episodes. The derived
fingerprint/domain columns are set when the trace produced a pattern and are
what the link builder scans.

Trace ids come from the reasoning loop and are free-form strings (not
necessarily UUIDs), so the primary key is a plain string column.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from reasonbank.models.base import Base, generate_uuid

EXTERNAL_ID_LENGTH = 200


class ReasoningTrace(Base):
    __tablename__ = "reasoning_traces"

    id: Mapped[str] = mapped_column(
        String(EXTERNAL_ID_LENGTH),
        primary_key=True,
        default=generate_uuid,
        doc="Caller-supplied trace id",
    )

    agent_type: Mapped[str] = mapped_column(String(100), nullable=False)

    request_id: Mapped[str] = mapped_column(String(200), nullable=False)

    steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    outcome: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    fingerprint: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    domain: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    pattern_id: Mapped[Optional[str]] = mapped_column(UUID(as_uuid=False), nullable=True)

    __table_args__ = (
        Index("ix_reasoning_traces_request_id", "request_id"),
        Index("ix_reasoning_traces_domain_created", "domain", "created_at"),
    )
