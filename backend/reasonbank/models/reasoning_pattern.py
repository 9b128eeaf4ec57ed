"""Learned reasoning patterns.

One row per tool-usage fingerprint. Rows are created on the first successful
trace carrying that fingerprint and blended (reward, usage) on every later one.
The spiking columns hold the transient activation state of the pattern.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Float, Index, Integer, String
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from reasonbank.core.config import settings
from reasonbank.models.base import Base, TimestampMixin, UUIDMixin


class ReasoningPattern(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "reasoning_patterns"

    fingerprint: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="Truncated SHA-256 of the sorted tool-name sequence",
    )

    domain: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Task-type namespace scoping retrieval (e.g. cfa-valuation)",
    )

    task_type: Mapped[str] = mapped_column(String(64), nullable=False)

    tags: Mapped[list[str]] = mapped_column(ARRAY(String(100)), nullable=False, default=list)

    tool_sequence: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    agent_types: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    embedding = mapped_column(Vector(settings.EMBEDDING_DIMENSIONS), nullable=False)

    reward_score: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.5,
        doc="Running reward in [0, 1]",
    )

    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    last_used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    spike_potential: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    potential_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Reference time for lazy potential decay",
    )

    last_spike_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    mincut_partition: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Cluster id from the last min-cut partitioning of the domain",
    )

    coherence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    __table_args__ = (
        Index("ux_reasoning_patterns_fingerprint", "fingerprint", unique=True),
        Index("ix_reasoning_patterns_domain", "domain"),
        Index("ix_reasoning_patterns_domain_potential", "domain", "spike_potential"),
        Index("ix_reasoning_patterns_domain_partition", "domain", "mincut_partition"),
    )


# Server-side similarity search, scoped to one domain. Created by the
# initial migration and by create_db_and_tables().
SEARCH_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION search_reasoning_patterns(
    query_embedding vector,
    match_domain text,
    match_limit integer,
    min_similarity double precision
)
RETURNS TABLE (
    pattern_id uuid,
    fingerprint varchar,
    domain varchar,
    task_type varchar,
    tool_sequence jsonb,
    reward_score double precision,
    usage_count integer,
    last_used_at timestamptz,
    similarity double precision
)
LANGUAGE sql STABLE
AS $$
    SELECT p.id,
           p.fingerprint,
           p.domain,
           p.task_type,
           p.tool_sequence,
           p.reward_score,
           p.usage_count,
           p.last_used_at,
           1 - (p.embedding <=> query_embedding) AS similarity
    FROM reasoning_patterns p
    WHERE p.domain = match_domain
      AND 1 - (p.embedding <=> query_embedding) >= min_similarity
    ORDER BY similarity DESC, p.reward_score DESC, p.last_used_at DESC
    LIMIT match_limit
$$;
"""
