"""Reasoning-loop integration boundary.

Learning is best-effort: nothing here may fail the caller's analysis. Every
method returns a StoreResult instead of raising, and this is the only layer
allowed to discard errors from the store. The services underneath raise.

get_stats() falls back to counters kept on this instance when the store is
unreachable. The counters belong to the ReasoningBank instance, not to the
process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from reasonbank.core.retry import ResilientQueryExecutor
from reasonbank.repositories import create_repository
from reasonbank.repositories.base import PatternRepository
from reasonbank.schemas.learning import (
    Feedback,
    FeedbackResult,
    PatternMatch,
    PatternRecord,
    SpikeEvent,
    Stats,
    Trace,
    TraceRecordResult,
)
from reasonbank.services.anomaly_detector import AnomalyDetector
from reasonbank.services.attention_ranker import AttentionRanker
from reasonbank.services.pattern_graph import PatternGraph
from reasonbank.services.pattern_store import EmbedFn, PatternStore
from reasonbank.services.spike_network import SpikeNetwork
from reasonbank.services.task_types import TaskType

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: T) -> "StoreResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception, value: Optional[T] = None) -> "StoreResult[T]":
        return cls(ok=False, value=value, error=error)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok and self.value is not None else default


class ReasoningBank:
    """Best-effort facade used by the reasoning loop."""

    def __init__(
        self,
        store: PatternStore,
        network: SpikeNetwork,
        anomalies: AnomalyDetector,
        attention: AttentionRanker,
        graph: Optional[PatternGraph] = None,
    ):
        self.store = store
        self.network = network
        self.anomalies = anomalies
        self.attention = attention
        self.graph = graph or PatternGraph(store.repository, executor=store.executor)
        self._local = Stats(source="local")

    @classmethod
    def from_repository(
        cls,
        repository: Optional[PatternRepository] = None,
        *,
        embed_fn: Optional[EmbedFn] = None,
        executor: Optional[ResilientQueryExecutor] = None,
    ) -> "ReasoningBank":
        repository = repository or create_repository()
        executor = executor or ResilientQueryExecutor()
        return cls(
            store=PatternStore(repository, embed_fn=embed_fn, executor=executor),
            network=SpikeNetwork(repository, executor=executor),
            anomalies=AnomalyDetector(repository, executor=executor),
            attention=AttentionRanker(repository, executor=executor),
            graph=PatternGraph(repository, executor=executor),
        )

    @property
    def local_stats(self) -> Stats:
        return self._local.model_copy()

    def _discard(self, operation: str, exc: Exception) -> None:
        logger.warning(f"Learning operation '{operation}' failed; continuing without it: {exc}", exc_info=exc)

    async def record_trace(self, trace: Trace | dict) -> StoreResult[TraceRecordResult]:
        try:
            result = await self.store.record_trace(trace)
        except Exception as exc:
            self._discard("record_trace", exc)
            return StoreResult.failure(exc)

        if result.duplicate:
            return StoreResult.success(result)

        self._local = self._local.model_copy(
            update={
                "total_traces": self._local.total_traces + 1,
                "total_patterns": self._local.total_patterns + (1 if result.created else 0),
            }
        )
        return StoreResult.success(result)

    async def record_feedback(self, feedback: Feedback | dict) -> StoreResult[FeedbackResult]:
        try:
            return StoreResult.success(await self.store.record_feedback(feedback))
        except Exception as exc:
            self._discard("record_feedback", exc)
            return StoreResult.failure(exc)

    async def get_pattern(self, pattern_id: str) -> StoreResult[Optional[PatternRecord]]:
        try:
            return StoreResult.success(await self.store.get_pattern(pattern_id))
        except Exception as exc:
            self._discard("get_pattern", exc)
            return StoreResult.failure(exc)

    async def search_patterns(self, task_type: TaskType | str, limit: int = 10) -> StoreResult[list[PatternMatch]]:
        try:
            return StoreResult.success(await self.store.search_for_task(task_type, limit))
        except Exception as exc:
            self._discard("search_patterns", exc)
            return StoreResult.failure(exc, value=[])

    async def get_stats(self) -> StoreResult[Stats]:
        """Store stats, or the last-known local counters when the store is unreachable."""
        try:
            stats = await self.store.get_stats()
        except Exception as exc:
            self._discard("get_stats", exc)
            return StoreResult.failure(exc, value=self.local_stats)

        self._local = stats.model_copy(update={"source": "local"})
        return StoreResult.success(stats)

    async def fire_spike(self, pattern_id: str) -> StoreResult[list[SpikeEvent]]:
        try:
            return StoreResult.success(await self.network.fire_spike(pattern_id))
        except Exception as exc:
            self._discard("fire_spike", exc)
            return StoreResult.failure(exc, value=[])
