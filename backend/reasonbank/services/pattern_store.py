"""Pattern store: trace recording, feedback blending and similarity retrieval.

Flow of record_trace():
1. Validate the trace (RecordValidationError on malformed input)
2. Successful traces with act-step tool calls from a known agent get a
   fingerprint, a task type from the agent mapping table, a domain and a
   guarded embedding. Unknown agents produce no pattern
3. One repository call appends the trace and upserts the pattern
   atomically; guard failures abort before any I/O. A trace id that is
   already stored changes nothing

Every repository call runs through the ResilientQueryExecutor.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from pydantic import ValidationError

from reasonbank.core.config import settings
from reasonbank.core.errors import RecordValidationError
from reasonbank.core.metrics import (
    duplicate_traces_total,
    feedback_applied_total,
    patterns_skipped_total,
    patterns_upserted_total,
    traces_recorded_total,
)
from reasonbank.core.retry import ResilientQueryExecutor
from reasonbank.repositories.base import PatternRepository
from reasonbank.schemas.learning import (
    Feedback,
    FeedbackResult,
    PatternMatch,
    PatternRecord,
    PatternUpsert,
    Stats,
    Trace,
    TraceOutcome,
    TraceRecordResult,
)
from reasonbank.services.embedding_guard import compute_validated_embedding
from reasonbank.services.embedding_service import EmbeddingService
from reasonbank.services.task_types import (
    AgentType,
    TaskType,
    domain_for_task_type,
    parse_agent_type,
    parse_task_type,
    task_type_for_agent,
)

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Awaitable[Sequence[float]]]

FINGERPRINT_LENGTH = 16
INITIAL_REWARD = 0.5
SKIP_UNKNOWN_AGENT = "unknown_agent_type"


def canonical_tool_name(name: str) -> str:
    return (name or "").strip().lower()


def fingerprint(tool_sequence: Sequence[str]) -> str:
    """Order-insensitive fingerprint of a tool-call sequence.

    Truncated SHA-256 over the sorted, canonicalized tool names, so the same
    tools called in a different order map to the same pattern.
    """
    canonical = sorted(canonical_tool_name(t) for t in tool_sequence)
    return hashlib.sha256(",".join(canonical).encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def pattern_text(task_type: str, tool_sequence: Sequence[str], agent_type: str) -> str:
    """Canonical text embedded for a pattern."""
    tools = " ".join(sorted(canonical_tool_name(t) for t in tool_sequence))
    return f"{task_type} analysis pattern: {tools} by {agent_type}"


def query_text_for_task(task_type: str) -> str:
    return f"{task_type} analysis pattern"


def _coerce(model, value: Any, kind: str):
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise RecordValidationError(f"Malformed {kind}: {exc.errors()}") from exc


class PatternStore:
    """Fingerprint-keyed pattern store over a PatternRepository."""

    def __init__(
        self,
        repository: PatternRepository,
        *,
        embed_fn: Optional[EmbedFn] = None,
        executor: Optional[ResilientQueryExecutor] = None,
        feedback_alpha: Optional[float] = None,
        min_similarity: Optional[float] = None,
    ):
        self.repository = repository
        self.embed_fn: EmbedFn = embed_fn or EmbeddingService.embed
        self.executor = executor or ResilientQueryExecutor()
        self.feedback_alpha = settings.FEEDBACK_BLEND_ALPHA if feedback_alpha is None else feedback_alpha
        self.min_similarity = settings.SEARCH_MIN_SIMILARITY if min_similarity is None else min_similarity

    async def embed(self, text: str) -> list[float]:
        """Compute a guarded embedding (raises EmbeddingQualityError)."""
        return await compute_validated_embedding(self.embed_fn, text)

    async def record_trace(self, trace: Trace | dict) -> TraceRecordResult:
        trace = _coerce(Trace, trace, "trace")

        tool_calls = [canonical_tool_name(t) for t in trace.act_tool_calls()]
        upsert: Optional[PatternUpsert] = None
        fp: Optional[str] = None
        domain: Optional[str] = None
        skipped: Optional[str] = None

        agent: Optional[AgentType] = None
        if trace.outcome == TraceOutcome.SUCCESS and tool_calls:
            try:
                agent = parse_agent_type(trace.agent_type)
            except RecordValidationError:
                skipped = SKIP_UNKNOWN_AGENT
                logger.warning(f"Trace {trace.id} from unknown agent '{trace.agent_type}'; storing without pattern")

        if agent is not None:
            task_type = task_type_for_agent(agent.value)
            domain = domain_for_task_type(task_type)
            fp = fingerprint(tool_calls)
            embedding = await self.embed(pattern_text(task_type.value, tool_calls, agent.value))

            # Distinct tools in first-call order
            sequence = list(dict.fromkeys(tool_calls))
            upsert = PatternUpsert(
                fingerprint=fp,
                domain=domain,
                task_type=task_type.value,
                tags=[agent.value, task_type.value],
                tool_sequence=sequence,
                agent_type=agent.value,
                embedding=embedding,
                observed_reward=INITIAL_REWARD,
                observed_at=datetime.now(timezone.utc),
            )

        write = await self.executor.run(
            lambda: self.repository.record_trace(trace, fingerprint=fp, domain=domain, upsert=upsert),
            name="record_trace",
        )

        if not write.inserted:
            duplicate_traces_total.inc()
            logger.debug(f"Trace {trace.id} already recorded; ignoring re-delivery")
            return TraceRecordResult(trace_id=trace.id, duplicate=True)

        traces_recorded_total.labels(outcome=trace.outcome.value).inc()
        if skipped is not None:
            patterns_skipped_total.labels(reason=skipped).inc()

        outcome = write.outcome
        if outcome is None:
            return TraceRecordResult(trace_id=trace.id, pattern_skipped=skipped)

        patterns_upserted_total.labels(domain=outcome.pattern.domain, created=str(outcome.created).lower()).inc()
        logger.debug(
            f"Recorded trace {trace.id} -> pattern {outcome.pattern.id} "
            f"(fingerprint={outcome.pattern.fingerprint}, created={outcome.created}, "
            f"usage={outcome.pattern.usage_count})"
        )
        return TraceRecordResult(
            trace_id=trace.id,
            pattern_id=outcome.pattern.id,
            fingerprint=outcome.pattern.fingerprint,
            created=outcome.created,
        )

    async def record_feedback(self, feedback: Feedback | dict) -> FeedbackResult:
        feedback = _coerce(Feedback, feedback, "feedback")
        alpha = self.feedback_alpha

        updated = await self.executor.run(
            lambda: self.repository.record_feedback(feedback, alpha=alpha),
            name="record_feedback",
        )
        feedback_applied_total.labels(matched=str(updated > 0).lower()).inc()
        if updated == 0:
            logger.debug(f"Feedback {feedback.id} for request {feedback.request_id} matched no pattern")
        return FeedbackResult(feedback_id=feedback.id, patterns_updated=updated)

    async def get_pattern(self, pattern_id: str) -> Optional[PatternRecord]:
        """Look up a pattern; absence returns None."""
        return await self.executor.run(lambda: self.repository.get_pattern(pattern_id), name="get_pattern")

    async def search_patterns(
        self,
        query_text: str,
        domain: str,
        limit: int = 10,
        min_similarity: Optional[float] = None,
    ) -> list[PatternMatch]:
        if limit <= 0:
            return []
        floor = self.min_similarity if min_similarity is None else min_similarity
        query = await self.embed(query_text)
        return await self.executor.run(
            lambda: self.repository.search(query, domain, limit, floor),
            name="search_patterns",
        )

    async def search_for_task(self, task_type: TaskType | str, limit: int = 10) -> list[PatternMatch]:
        """Patterns for an agent's think step, scoped to the task type's domain."""
        tt = task_type if isinstance(task_type, TaskType) else parse_task_type(task_type)
        return await self.search_patterns(query_text_for_task(tt.value), domain_for_task_type(tt), limit)

    async def get_stats(self) -> Stats:
        return await self.executor.run(self.repository.get_stats, name="get_stats")

    async def health_check(self) -> bool:
        return await self.executor.run(self.repository.health_check, name="health_check")
