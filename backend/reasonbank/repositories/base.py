"""Persistence seam for the learning core.

Every method is one atomic store operation. Services route each call through
a ResilientQueryExecutor, so implementations must be safe to re-run after a
transient fault (at-least-once).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

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
)


@runtime_checkable
class PatternRepository(Protocol):
    backend: str

    async def health_check(self) -> bool: ...

    async def record_trace(
        self,
        trace: Trace,
        *,
        fingerprint: Optional[str] = None,
        domain: Optional[str] = None,
        upsert: Optional[PatternUpsert] = None,
    ) -> TraceWrite:
        """Append the trace and, when given, upsert its pattern in one transaction.

        A trace id that is already stored is a no-op: nothing is upserted and
        inserted is False, so re-delivery never counts an episode twice.

        Upsert semantics, keyed by fingerprint:
        - existing: reward = (reward*usage + observed)/(usage+1), usage += 1, last_used_at = observed_at
        - new: reward = observed, usage = 1
        """
        ...

    async def record_feedback(self, feedback: Feedback, *, alpha: float) -> int:
        """Store feedback and blend it into patterns of traces with the same request_id.

        Returns the number of patterns updated (0 when nothing matches).
        """
        ...

    async def get_pattern(self, pattern_id: str) -> Optional[PatternRecord]: ...

    async def search(
        self,
        query_embedding: Sequence[float],
        domain: str,
        limit: int,
        min_similarity: float,
    ) -> list[PatternMatch]:
        """Domain-scoped nearest neighbours above a similarity floor.

        Ordered by similarity desc, then reward desc, then last_used_at desc.
        """
        ...

    async def spike_candidates(
        self,
        query_embedding: Sequence[float],
        domain: str,
        limit: int,
    ) -> list[SpikeCandidate]: ...

    async def get_stats(self) -> Stats: ...

    async def list_patterns(self, domain: str) -> list[PatternRecord]: ...

    async def discharge(self, pattern_id: str, *, now: datetime, is_source: bool) -> Optional[str]:
        """Zero the potential, stamp last_spike_at and log a firing.

        Returns the pattern's domain, or None when the pattern does not exist.
        """
        ...

    async def add_potential(
        self,
        pattern_id: str,
        delta: float,
        *,
        now: datetime,
        half_life_seconds: float,
    ) -> Optional[float]:
        """Atomically set potential = min(1, decayed(potential) + delta).

        Returns the new potential, or None when the pattern does not exist.
        """
        ...

    async def outgoing_links(self, pattern_id: str) -> list[PatternLinkRecord]:
        """Links leaving the pattern, strongest first, with target_last_spike_at set."""
        ...

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
        """Atomically clamp plasticity_weight + delta into [min_weight, max_weight].

        Also counts the activation and stamps last_activation. Returns the new
        plasticity weight, or None when the link does not exist.
        """
        ...

    async def list_links(self, domain: str) -> list[PatternLinkRecord]: ...

    async def upsert_links(self, links: Sequence[PatternLinkRecord]) -> int:
        """Insert or refresh weight/co_occurrences; plasticity state is kept."""
        ...

    async def trace_pattern_sequence(self, domain: str) -> list[str]:
        """Pattern ids of the domain's pattern-producing traces, oldest first."""
        ...

    async def spike_counts(self, domain: str, since: datetime) -> dict[str, int]:
        """Firings per pattern since the given time; every domain pattern is present."""
        ...

    async def reset_potentials(self, domain: str, *, now: datetime) -> int: ...

    async def decay_potentials(self, domain: str, *, now: datetime, half_life_seconds: float) -> int: ...

    async def graph_nodes(self, domain: str) -> list[GraphNode]:
        """Embedding and partition of every pattern in the domain."""
        ...

    async def assign_partitions(self, domain: str, clusters: Sequence[PatternCluster]) -> int:
        """Replace the domain's partition assignments in one transaction.

        Patterns not in any cluster are cleared. Returns the number assigned.
        """
        ...
