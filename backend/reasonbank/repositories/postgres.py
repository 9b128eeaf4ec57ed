"""Postgres + pgvector pattern repository.

Each method runs in its own transaction. Write paths are single atomic
statements so concurrent writers are serialized by Postgres, not by the
application:

- pattern upsert: INSERT ... ON CONFLICT (fingerprint) DO UPDATE with the
  reward/usage blend computed in SQL
- feedback blend: one UPDATE over the fingerprints of matching traces
- potential increment: UPDATE ... SET spike_potential = least(1, decayed + w) RETURNING
- link upsert: INSERT ... ON CONFLICT (source_id, target_id) DO UPDATE
- plasticity: UPDATE ... SET plasticity_weight = least(max, greatest(min, w + delta)) RETURNING

Similarity search goes through the search_reasoning_patterns() SQL function
created by the initial migration.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Optional, Sequence

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, bindparam, case, func, literal, literal_column, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reasonbank.models import (
    PatternLink,
    QualityFeedback,
    ReasoningPattern,
    ReasoningTrace,
    SpikeEventLog,
)
from reasonbank.models.base import generate_uuid
from reasonbank.schemas.learning import (
    Feedback,
    GraphNode,
    PatternCluster,
    PatternLinkRecord,
    PatternMatch,
    PatternRecord,
    PatternUpsert,
    SpikeCandidate,
    Stats,
    Trace,
    TraceWrite,
    UpsertOutcome,
)

_SEARCH_SQL = text(
    """
    SELECT pattern_id, fingerprint, domain, task_type, tool_sequence,
           reward_score, usage_count, last_used_at, similarity
    FROM search_reasoning_patterns(:query, :domain, :match_limit, :min_similarity)
    """
)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except (ValueError, TypeError):
        return False
    return True


def _to_record(row: Any, *, include_embedding: bool = False) -> PatternRecord:
    embedding = None
    if include_embedding and row.embedding is not None:
        embedding = [float(x) for x in row.embedding]
    return PatternRecord(
        id=str(row.id),
        fingerprint=row.fingerprint,
        domain=row.domain,
        task_type=row.task_type,
        tags=list(row.tags or []),
        tool_sequence=list(row.tool_sequence or []),
        agent_types=list(row.agent_types or []),
        embedding=embedding,
        reward_score=float(row.reward_score),
        usage_count=int(row.usage_count),
        created_at=row.created_at,
        last_used_at=row.last_used_at,
        spike_potential=float(row.spike_potential or 0.0),
        potential_updated_at=row.potential_updated_at,
        last_spike_at=row.last_spike_at,
        mincut_partition=getattr(row, "mincut_partition", None),
        coherence_score=float(getattr(row, "coherence_score", 0.0) or 0.0),
    )


def _decayed_potential_expr(now: datetime, half_life_seconds: float):
    """SQL expression for spike_potential decayed from potential_updated_at to now."""
    if half_life_seconds <= 0:
        return ReasoningPattern.spike_potential
    now_param = literal(now, DateTime(timezone=True))
    elapsed = func.extract(
        "epoch",
        now_param - func.coalesce(ReasoningPattern.potential_updated_at, now_param),
    )
    return ReasoningPattern.spike_potential * func.power(
        0.5, func.greatest(0.0, elapsed) / float(half_life_seconds)
    )


class PostgresPatternRepository:
    backend = "postgres"

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from reasonbank.core.database import get_session_factory

            self._session_factory = get_session_factory()
        return self._session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> bool:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def record_trace(
        self,
        trace: Trace,
        *,
        fingerprint: Optional[str] = None,
        domain: Optional[str] = None,
        upsert: Optional[PatternUpsert] = None,
    ) -> TraceWrite:
        async with self._session() as session:
            trace_stmt = (
                insert(ReasoningTrace)
                .values(
                    id=trace.id,
                    agent_type=trace.agent_type,
                    request_id=trace.request_id,
                    steps=[s.model_dump(mode="json") for s in trace.steps],
                    outcome=trace.outcome.value,
                    created_at=trace.created_at,
                    fingerprint=fingerprint,
                    domain=domain,
                )
                .on_conflict_do_nothing(index_elements=["id"])
                .returning(ReasoningTrace.id)
            )
            inserted_id = (await session.execute(trace_stmt)).scalar_one_or_none()
            # Re-delivery of the same trace id (including a retry after a lost
            # commit acknowledgement) upserts nothing
            if inserted_id is None:
                return TraceWrite(inserted=False)
            if upsert is None:
                return TraceWrite(inserted=True)

            outcome = await self._upsert_pattern(session, upsert)
            await session.execute(
                update(ReasoningTrace)
                .where(ReasoningTrace.id == trace.id)
                .values(pattern_id=outcome.pattern.id)
            )
            return TraceWrite(inserted=True, outcome=outcome)

    async def _upsert_pattern(self, session: AsyncSession, upsert: PatternUpsert) -> UpsertOutcome:
        observed = float(upsert.observed_reward)
        stmt = insert(ReasoningPattern.__table__).values(
            id=generate_uuid(),
            fingerprint=upsert.fingerprint,
            domain=upsert.domain,
            task_type=upsert.task_type,
            tags=list(upsert.tags),
            tool_sequence=list(upsert.tool_sequence),
            agent_types=[upsert.agent_type],
            embedding=list(upsert.embedding),
            reward_score=observed,
            usage_count=1,
            created_at=upsert.observed_at,
            updated_at=upsert.observed_at,
            last_used_at=upsert.observed_at,
            spike_potential=0.0,
            potential_updated_at=upsert.observed_at,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["fingerprint"],
            set_={
                "reward_score": func.least(
                    1.0,
                    func.greatest(
                        0.0,
                        (ReasoningPattern.reward_score * ReasoningPattern.usage_count + excluded.reward_score)
                        / (ReasoningPattern.usage_count + 1),
                    ),
                ),
                "usage_count": ReasoningPattern.usage_count + 1,
                "last_used_at": excluded.last_used_at,
                "agent_types": case(
                    (
                        ReasoningPattern.agent_types.contains(excluded.agent_types),
                        ReasoningPattern.agent_types,
                    ),
                    else_=ReasoningPattern.agent_types.op("||")(excluded.agent_types),
                ),
                "updated_at": func.now(),
            },
        ).returning(*ReasoningPattern.__table__.c, literal_column("(xmax = 0)").label("inserted"))

        result = await session.execute(stmt)
        row = result.one()
        return UpsertOutcome(pattern=_to_record(row), created=bool(row.inserted))

    async def record_feedback(self, feedback: Feedback, *, alpha: float) -> int:
        async with self._session() as session:
            await session.execute(
                insert(QualityFeedback)
                .values(
                    id=feedback.id,
                    request_id=feedback.request_id,
                    score=float(feedback.score),
                    automated=bool(feedback.automated),
                    created_at=feedback.created_at,
                )
                .on_conflict_do_nothing(index_elements=["id"])
            )

            matching = (
                select(ReasoningTrace.fingerprint)
                .where(ReasoningTrace.request_id == feedback.request_id)
                .where(ReasoningTrace.fingerprint.is_not(None))
            )
            score = float(feedback.score)
            stmt = (
                update(ReasoningPattern)
                .where(ReasoningPattern.fingerprint.in_(matching))
                .values(
                    reward_score=func.least(
                        1.0,
                        func.greatest(0.0, ReasoningPattern.reward_score * (1.0 - alpha) + score * alpha),
                    ),
                    updated_at=func.now(),
                )
            )
            res = await session.execute(stmt)
            return int(getattr(res, "rowcount", 0) or 0)

    async def get_pattern(self, pattern_id: str) -> Optional[PatternRecord]:
        if not _is_uuid(pattern_id):
            return None
        async with self._session() as session:
            row = await session.get(ReasoningPattern, str(pattern_id))
            if row is None:
                return None
            return _to_record(row, include_embedding=True)

    async def search(
        self,
        query_embedding: Sequence[float],
        domain: str,
        limit: int,
        min_similarity: float,
    ) -> list[PatternMatch]:
        stmt = _SEARCH_SQL.bindparams(
            bindparam("query", type_=Vector(len(query_embedding))),
        )
        async with self._session() as session:
            result = await session.execute(
                stmt,
                {
                    "query": list(query_embedding),
                    "domain": domain,
                    "match_limit": int(limit),
                    "min_similarity": float(min_similarity),
                },
            )
            rows = result.mappings().all()

        return [
            PatternMatch(
                pattern_id=str(r["pattern_id"]),
                task_type=r["task_type"],
                domain=r["domain"],
                tool_sequence=list(r["tool_sequence"] or []),
                reward_score=float(r["reward_score"]),
                usage_count=int(r["usage_count"]),
                fingerprint=r["fingerprint"],
                similarity=float(r["similarity"]),
                last_used_at=r["last_used_at"],
            )
            for r in rows
        ]

    async def spike_candidates(
        self,
        query_embedding: Sequence[float],
        domain: str,
        limit: int,
    ) -> list[SpikeCandidate]:
        distance = ReasoningPattern.embedding.cosine_distance(list(query_embedding))
        stmt = (
            select(
                ReasoningPattern.id,
                (1.0 - distance).label("similarity"),
                ReasoningPattern.spike_potential,
                ReasoningPattern.potential_updated_at,
            )
            .where(ReasoningPattern.domain == domain)
            .order_by(distance)
            .limit(int(limit))
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        return [
            SpikeCandidate(
                pattern_id=str(r[0]),
                similarity=float(r[1]),
                spike_potential=float(r[2] or 0.0),
                potential_updated_at=r[3],
            )
            for r in rows
        ]

    async def get_stats(self) -> Stats:
        async with self._session() as session:
            pattern_row = (
                await session.execute(
                    select(func.count(ReasoningPattern.id), func.avg(ReasoningPattern.reward_score))
                )
            ).one()
            total_traces = (await session.execute(select(func.count(ReasoningTrace.id)))).scalar_one()

        return Stats(
            total_patterns=int(pattern_row[0] or 0),
            total_traces=int(total_traces or 0),
            avg_reward=float(pattern_row[1] or 0.0),
        )

    async def list_patterns(self, domain: str) -> list[PatternRecord]:
        async with self._session() as session:
            rows = (
                await session.execute(select(ReasoningPattern).where(ReasoningPattern.domain == domain))
            ).scalars().all()
            return [_to_record(r) for r in rows]

    async def discharge(self, pattern_id: str, *, now: datetime, is_source: bool) -> Optional[str]:
        if not _is_uuid(pattern_id):
            return None
        async with self._session() as session:
            res = await session.execute(
                update(ReasoningPattern)
                .where(ReasoningPattern.id == str(pattern_id))
                .values(spike_potential=0.0, potential_updated_at=now, last_spike_at=now)
                .returning(ReasoningPattern.domain)
            )
            domain = res.scalar_one_or_none()
            if domain is None:
                return None

            await session.execute(
                insert(SpikeEventLog).values(
                    id=generate_uuid(),
                    pattern_id=str(pattern_id),
                    domain=domain,
                    fired_at=now,
                    is_source=is_source,
                )
            )
            return domain

    async def add_potential(
        self,
        pattern_id: str,
        delta: float,
        *,
        now: datetime,
        half_life_seconds: float,
    ) -> Optional[float]:
        if not _is_uuid(pattern_id):
            return None
        decayed = _decayed_potential_expr(now, half_life_seconds)
        stmt = (
            update(ReasoningPattern)
            .where(ReasoningPattern.id == str(pattern_id))
            .values(
                spike_potential=func.least(1.0, func.greatest(0.0, decayed + float(delta))),
                potential_updated_at=now,
            )
            .returning(ReasoningPattern.spike_potential)
        )
        async with self._session() as session:
            value = (await session.execute(stmt)).scalar_one_or_none()
        return None if value is None else float(value)

    async def outgoing_links(self, pattern_id: str) -> list[PatternLinkRecord]:
        if not _is_uuid(pattern_id):
            return []
        stmt = (
            select(PatternLink, ReasoningPattern.last_spike_at)
            .join(ReasoningPattern, ReasoningPattern.id == PatternLink.target_id)
            .where(PatternLink.source_id == str(pattern_id))
            .order_by(PatternLink.weight.desc(), PatternLink.target_id)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
            return [
                self._link_record(link).model_copy(update={"target_last_spike_at": last_spike_at})
                for link, last_spike_at in rows
            ]

    async def apply_plasticity(
        self,
        source_id: str,
        target_id: str,
        delta: float,
        *,
        now: datetime,
        min_weight: float,
        max_weight: float,
    ) -> Optional[float]:
        if not (_is_uuid(source_id) and _is_uuid(target_id)):
            return None
        stmt = (
            update(PatternLink)
            .where(PatternLink.source_id == str(source_id))
            .where(PatternLink.target_id == str(target_id))
            .values(
                plasticity_weight=func.least(
                    float(max_weight),
                    func.greatest(float(min_weight), PatternLink.plasticity_weight + float(delta)),
                ),
                spike_count=PatternLink.spike_count + 1,
                last_activation=now,
            )
            .returning(PatternLink.plasticity_weight)
        )
        async with self._session() as session:
            value = (await session.execute(stmt)).scalar_one_or_none()
        return None if value is None else float(value)

    async def list_links(self, domain: str) -> list[PatternLinkRecord]:
        stmt = (
            select(PatternLink)
            .join(ReasoningPattern, ReasoningPattern.id == PatternLink.source_id)
            .where(ReasoningPattern.domain == domain)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [self._link_record(r) for r in rows]

    @staticmethod
    def _link_record(row: PatternLink) -> PatternLinkRecord:
        return PatternLinkRecord(
            source_id=str(row.source_id),
            target_id=str(row.target_id),
            weight=float(row.weight),
            co_occurrences=int(row.co_occurrences or 0),
            plasticity_weight=float(row.plasticity_weight or 1.0),
            spike_count=int(row.spike_count or 0),
            last_activation=row.last_activation,
        )

    async def upsert_links(self, links: Sequence[PatternLinkRecord]) -> int:
        if not links:
            return 0

        values: list[dict[str, Any]] = [
            {
                "id": generate_uuid(),
                "source_id": link.source_id,
                "target_id": link.target_id,
                "weight": float(link.weight),
                "co_occurrences": int(link.co_occurrences),
            }
            for link in links
        ]
        stmt = insert(PatternLink).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_id", "target_id"],
            set_={
                "weight": stmt.excluded.weight,
                "co_occurrences": stmt.excluded.co_occurrences,
                "updated_at": func.now(),
            },
        )
        async with self._session() as session:
            await session.execute(stmt)
        return len(values)

    async def trace_pattern_sequence(self, domain: str) -> list[str]:
        stmt = (
            select(ReasoningTrace.pattern_id)
            .where(ReasoningTrace.domain == domain)
            .where(ReasoningTrace.pattern_id.is_not(None))
            .order_by(ReasoningTrace.created_at, ReasoningTrace.id)
        )
        async with self._session() as session:
            return [str(pid) for pid in (await session.execute(stmt)).scalars().all()]

    async def spike_counts(self, domain: str, since: datetime) -> dict[str, int]:
        stmt = (
            select(ReasoningPattern.id, func.count(SpikeEventLog.id))
            .select_from(ReasoningPattern)
            .outerjoin(
                SpikeEventLog,
                (SpikeEventLog.pattern_id == ReasoningPattern.id) & (SpikeEventLog.fired_at >= since),
            )
            .where(ReasoningPattern.domain == domain)
            .group_by(ReasoningPattern.id)
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
        return {str(r[0]): int(r[1] or 0) for r in rows}

    async def reset_potentials(self, domain: str, *, now: datetime) -> int:
        stmt = (
            update(ReasoningPattern)
            .where(ReasoningPattern.domain == domain)
            .where(ReasoningPattern.spike_potential > 0)
            .values(spike_potential=0.0, potential_updated_at=now)
        )
        async with self._session() as session:
            res = await session.execute(stmt)
            return int(getattr(res, "rowcount", 0) or 0)

    async def decay_potentials(self, domain: str, *, now: datetime, half_life_seconds: float) -> int:
        stmt = (
            update(ReasoningPattern)
            .where(ReasoningPattern.domain == domain)
            .where(ReasoningPattern.spike_potential > 0)
            .values(
                spike_potential=func.least(1.0, func.greatest(0.0, _decayed_potential_expr(now, half_life_seconds))),
                potential_updated_at=now,
            )
        )
        async with self._session() as session:
            res = await session.execute(stmt)
            return int(getattr(res, "rowcount", 0) or 0)

    async def graph_nodes(self, domain: str) -> list[GraphNode]:
        stmt = select(
            ReasoningPattern.id,
            ReasoningPattern.embedding,
            ReasoningPattern.mincut_partition,
        ).where(ReasoningPattern.domain == domain)
        async with self._session() as session:
            rows = (await session.execute(stmt)).all()
        return [
            GraphNode(
                pattern_id=str(r[0]),
                embedding=[float(x) for x in r[1]],
                mincut_partition=r[2],
            )
            for r in rows
            if r[1] is not None
        ]

    async def assign_partitions(self, domain: str, clusters: Sequence[PatternCluster]) -> int:
        assigned = 0
        async with self._session() as session:
            await session.execute(
                update(ReasoningPattern)
                .where(ReasoningPattern.domain == domain)
                .values(mincut_partition=None, coherence_score=0.0)
            )
            for cluster in clusters:
                ids = [pid for pid in cluster.pattern_ids if _is_uuid(pid)]
                if not ids:
                    continue
                res = await session.execute(
                    update(ReasoningPattern)
                    .where(ReasoningPattern.domain == domain)
                    .where(ReasoningPattern.id.in_(ids))
                    .values(
                        mincut_partition=cluster.cluster_id,
                        coherence_score=float(cluster.coherence_score),
                    )
                )
                assigned += int(getattr(res, "rowcount", 0) or 0)
        return assigned
