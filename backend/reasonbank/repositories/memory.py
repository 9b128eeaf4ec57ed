"""Process-local pattern repository.

Development and test backend. A single asyncio.Lock serializes every
operation, which gives each primitive the same atomicity the Postgres
backend gets from conditional upserts and single-statement updates.

Records are copied on the way in and on the way out, so callers never hold
a reference into the stored state.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence
from uuid import uuid4

import numpy as np

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
from reasonbank.services.scoring import (
    blend_feedback,
    blend_usage_reward,
    clamp01,
    cosine_similarity,
    decayed_potential,
)


@dataclass
class _StoredTrace:
    trace: Trace
    fingerprint: Optional[str]
    domain: Optional[str]
    pattern_id: Optional[str]
    recorded_at: datetime


@dataclass
class _SpikeLogEntry:
    pattern_id: str
    domain: str
    fired_at: datetime
    is_source: bool


@dataclass
class _MemoryState:
    patterns: dict[str, PatternRecord] = field(default_factory=dict)
    by_fingerprint: dict[str, str] = field(default_factory=dict)
    embeddings: dict[str, np.ndarray] = field(default_factory=dict)
    traces: dict[str, _StoredTrace] = field(default_factory=dict)
    feedback: dict[str, Feedback] = field(default_factory=dict)
    links: dict[tuple[str, str], PatternLinkRecord] = field(default_factory=dict)
    spikes: list[_SpikeLogEntry] = field(default_factory=list)


class InMemoryPatternRepository:
    backend = "memory"

    def __init__(self) -> None:
        self._state = _MemoryState()
        self._lock = asyncio.Lock()

    async def health_check(self) -> bool:
        return True

    def _upsert_locked(self, upsert: PatternUpsert) -> UpsertOutcome:
        state = self._state
        existing_id = state.by_fingerprint.get(upsert.fingerprint)

        if existing_id is None:
            pattern_id = str(uuid4())
            record = PatternRecord(
                id=pattern_id,
                fingerprint=upsert.fingerprint,
                domain=upsert.domain,
                task_type=upsert.task_type,
                tags=list(upsert.tags),
                tool_sequence=list(upsert.tool_sequence),
                agent_types=[upsert.agent_type],
                reward_score=clamp01(upsert.observed_reward),
                usage_count=1,
                created_at=upsert.observed_at,
                last_used_at=upsert.observed_at,
                spike_potential=0.0,
                potential_updated_at=upsert.observed_at,
            )
            state.patterns[pattern_id] = record
            state.by_fingerprint[upsert.fingerprint] = pattern_id
            state.embeddings[pattern_id] = np.asarray(upsert.embedding, dtype=np.float64)
            return UpsertOutcome(pattern=record.model_copy(deep=True), created=True)

        current = state.patterns[existing_id]
        agent_types = list(current.agent_types)
        if upsert.agent_type not in agent_types:
            agent_types.append(upsert.agent_type)

        updated = current.model_copy(
            update={
                "reward_score": blend_usage_reward(
                    current.reward_score, current.usage_count, upsert.observed_reward
                ),
                "usage_count": current.usage_count + 1,
                "last_used_at": upsert.observed_at,
                "agent_types": agent_types,
            }
        )
        state.patterns[existing_id] = updated
        return UpsertOutcome(pattern=updated.model_copy(deep=True), created=False)

    async def record_trace(
        self,
        trace: Trace,
        *,
        fingerprint: Optional[str] = None,
        domain: Optional[str] = None,
        upsert: Optional[PatternUpsert] = None,
    ) -> TraceWrite:
        async with self._lock:
            # Re-delivery of the same trace id keeps the first copy
            if trace.id in self._state.traces:
                return TraceWrite(inserted=False)

            outcome = self._upsert_locked(upsert) if upsert is not None else None
            self._state.traces[trace.id] = _StoredTrace(
                trace=trace.model_copy(deep=True),
                fingerprint=fingerprint,
                domain=domain,
                pattern_id=outcome.pattern.id if outcome else None,
                recorded_at=datetime.now(timezone.utc),
            )
            return TraceWrite(inserted=True, outcome=outcome)

    async def record_feedback(self, feedback: Feedback, *, alpha: float) -> int:
        async with self._lock:
            state = self._state
            state.feedback.setdefault(feedback.id, feedback.model_copy(deep=True))

            fingerprints = {
                t.fingerprint
                for t in state.traces.values()
                if t.trace.request_id == feedback.request_id and t.fingerprint
            }
            updated = 0
            for fp in fingerprints:
                pattern_id = state.by_fingerprint.get(fp)
                if pattern_id is None:
                    continue
                current = state.patterns[pattern_id]
                state.patterns[pattern_id] = current.model_copy(
                    update={"reward_score": blend_feedback(current.reward_score, feedback.score, alpha)}
                )
                updated += 1
            return updated

    async def get_pattern(self, pattern_id: str) -> Optional[PatternRecord]:
        async with self._lock:
            record = self._state.patterns.get(pattern_id)
            if record is None:
                return None
            return record.model_copy(
                update={"embedding": self._state.embeddings[pattern_id].tolist()}, deep=True
            )

    async def search(
        self,
        query_embedding: Sequence[float],
        domain: str,
        limit: int,
        min_similarity: float,
    ) -> list[PatternMatch]:
        query = np.asarray(query_embedding, dtype=np.float64)
        async with self._lock:
            matches: list[PatternMatch] = []
            for pattern_id, record in self._state.patterns.items():
                if record.domain != domain:
                    continue
                sim = cosine_similarity(self._state.embeddings[pattern_id], query)
                if sim < min_similarity:
                    continue
                matches.append(
                    PatternMatch(
                        pattern_id=pattern_id,
                        task_type=record.task_type,
                        domain=record.domain,
                        tool_sequence=list(record.tool_sequence),
                        reward_score=record.reward_score,
                        usage_count=record.usage_count,
                        fingerprint=record.fingerprint,
                        similarity=sim,
                        last_used_at=record.last_used_at,
                    )
                )

        matches.sort(key=lambda m: (m.similarity, m.reward_score, m.last_used_at), reverse=True)
        return matches[: max(0, int(limit))]

    async def spike_candidates(
        self,
        query_embedding: Sequence[float],
        domain: str,
        limit: int,
    ) -> list[SpikeCandidate]:
        query = np.asarray(query_embedding, dtype=np.float64)
        async with self._lock:
            candidates = [
                SpikeCandidate(
                    pattern_id=pattern_id,
                    similarity=cosine_similarity(self._state.embeddings[pattern_id], query),
                    spike_potential=record.spike_potential,
                    potential_updated_at=record.potential_updated_at,
                )
                for pattern_id, record in self._state.patterns.items()
                if record.domain == domain
            ]

        candidates.sort(key=lambda c: c.similarity, reverse=True)
        return candidates[: max(0, int(limit))]

    async def get_stats(self) -> Stats:
        async with self._lock:
            patterns = list(self._state.patterns.values())
            avg = sum(p.reward_score for p in patterns) / len(patterns) if patterns else 0.0
            return Stats(
                total_patterns=len(patterns),
                total_traces=len(self._state.traces),
                avg_reward=avg,
            )

    async def list_patterns(self, domain: str) -> list[PatternRecord]:
        async with self._lock:
            return [p.model_copy(deep=True) for p in self._state.patterns.values() if p.domain == domain]

    async def discharge(self, pattern_id: str, *, now: datetime, is_source: bool) -> Optional[str]:
        async with self._lock:
            record = self._state.patterns.get(pattern_id)
            if record is None:
                return None
            self._state.patterns[pattern_id] = record.model_copy(
                update={"spike_potential": 0.0, "potential_updated_at": now, "last_spike_at": now}
            )
            self._state.spikes.append(
                _SpikeLogEntry(pattern_id=pattern_id, domain=record.domain, fired_at=now, is_source=is_source)
            )
            return record.domain

    async def add_potential(
        self,
        pattern_id: str,
        delta: float,
        *,
        now: datetime,
        half_life_seconds: float,
    ) -> Optional[float]:
        async with self._lock:
            record = self._state.patterns.get(pattern_id)
            if record is None:
                return None
            current = decayed_potential(
                record.spike_potential, record.potential_updated_at, now, half_life_seconds
            )
            new_potential = min(1.0, current + delta)
            self._state.patterns[pattern_id] = record.model_copy(
                update={"spike_potential": new_potential, "potential_updated_at": now}
            )
            return new_potential

    async def outgoing_links(self, pattern_id: str) -> list[PatternLinkRecord]:
        async with self._lock:
            patterns = self._state.patterns
            links = [
                link.model_copy(
                    update={
                        "target_last_spike_at": (
                            patterns[tgt].last_spike_at if tgt in patterns else None
                        )
                    }
                )
                for (src, tgt), link in self._state.links.items()
                if src == pattern_id
            ]
        links.sort(key=lambda link: (-link.weight, link.target_id))
        return links

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
        async with self._lock:
            key = (source_id, target_id)
            link = self._state.links.get(key)
            if link is None:
                return None
            weight = max(min_weight, min(max_weight, link.plasticity_weight + delta))
            self._state.links[key] = link.model_copy(
                update={
                    "plasticity_weight": weight,
                    "spike_count": link.spike_count + 1,
                    "last_activation": now,
                }
            )
            return weight

    async def list_links(self, domain: str) -> list[PatternLinkRecord]:
        async with self._lock:
            patterns = self._state.patterns
            return [
                link.model_copy()
                for (src, _), link in self._state.links.items()
                if src in patterns and patterns[src].domain == domain
            ]

    async def upsert_links(self, links: Sequence[PatternLinkRecord]) -> int:
        async with self._lock:
            for link in links:
                key = (link.source_id, link.target_id)
                existing = self._state.links.get(key)
                if existing is None:
                    self._state.links[key] = link.model_copy(update={"target_last_spike_at": None})
                else:
                    self._state.links[key] = existing.model_copy(
                        update={"weight": link.weight, "co_occurrences": link.co_occurrences}
                    )
            return len(links)

    async def trace_pattern_sequence(self, domain: str) -> list[str]:
        async with self._lock:
            rows = [
                t
                for t in self._state.traces.values()
                if t.domain == domain and t.pattern_id is not None
            ]
        rows.sort(key=lambda t: (t.trace.created_at, t.trace.id))
        return [t.pattern_id for t in rows]

    async def spike_counts(self, domain: str, since: datetime) -> dict[str, int]:
        async with self._lock:
            counts = {pid: 0 for pid, p in self._state.patterns.items() if p.domain == domain}
            for entry in self._state.spikes:
                if entry.domain == domain and entry.fired_at >= since and entry.pattern_id in counts:
                    counts[entry.pattern_id] += 1
            return counts

    async def reset_potentials(self, domain: str, *, now: datetime) -> int:
        async with self._lock:
            affected = 0
            for pid, record in list(self._state.patterns.items()):
                if record.domain != domain or record.spike_potential <= 0.0:
                    continue
                self._state.patterns[pid] = record.model_copy(
                    update={"spike_potential": 0.0, "potential_updated_at": now}
                )
                affected += 1
            return affected

    async def decay_potentials(self, domain: str, *, now: datetime, half_life_seconds: float) -> int:
        async with self._lock:
            affected = 0
            for pid, record in list(self._state.patterns.items()):
                if record.domain != domain or record.spike_potential <= 0.0:
                    continue
                self._state.patterns[pid] = record.model_copy(
                    update={
                        "spike_potential": decayed_potential(
                            record.spike_potential, record.potential_updated_at, now, half_life_seconds
                        ),
                        "potential_updated_at": now,
                    }
                )
                affected += 1
            return affected

    async def graph_nodes(self, domain: str) -> list[GraphNode]:
        async with self._lock:
            return [
                GraphNode(
                    pattern_id=pid,
                    embedding=self._state.embeddings[pid].tolist(),
                    mincut_partition=record.mincut_partition,
                )
                for pid, record in self._state.patterns.items()
                if record.domain == domain
            ]

    async def assign_partitions(self, domain: str, clusters: Sequence[PatternCluster]) -> int:
        async with self._lock:
            assignment = {
                pid: (cluster.cluster_id, cluster.coherence_score)
                for cluster in clusters
                for pid in cluster.pattern_ids
            }
            assigned = 0
            for pid, record in list(self._state.patterns.items()):
                if record.domain != domain:
                    continue
                partition, coherence = assignment.get(pid, (None, 0.0))
                self._state.patterns[pid] = record.model_copy(
                    update={"mincut_partition": partition, "coherence_score": coherence}
                )
                if partition is not None:
                    assigned += 1
            return assigned
