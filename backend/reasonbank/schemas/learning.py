"""Learning core Pydantic schemas.

Records supplied by the reasoning loop (Trace, Feedback), the persisted
pattern view, and the result types of retrieval, spiking, anomaly
detection and attention ranking.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import Field, field_validator

from reasonbank.schemas.base import BaseSchema


# Trace and feedback ids are caller-assigned strings
EXTERNAL_ID_MAX_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class StepPhase(str, Enum):
    OBSERVE = "observe"
    THINK = "think"
    ACT = "act"
    REFLECT = "reflect"


class TraceOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class TraceStep(BaseSchema):
    """One step of a reasoning episode."""

    phase: StepPhase
    content: str = ""
    tool_calls: Optional[List[str]] = Field(
        default=None,
        description="Tool names invoked by an act step; non-empty when present",
    )

    @field_validator("tool_calls")
    @classmethod
    def validate_tool_calls(cls, v):
        if v is None:
            return v
        cleaned = [str(t).strip() for t in v]
        if not cleaned or any(not t for t in cleaned):
            raise ValueError("tool_calls must be a non-empty list of tool names")
        return cleaned


class Trace(BaseSchema):
    """A completed reasoning episode (append-only, immutable once recorded)."""

    id: str = Field(default_factory=_new_id, min_length=1, max_length=EXTERNAL_ID_MAX_LENGTH)
    agent_type: str = Field(..., min_length=1)
    request_id: str = Field(..., min_length=1)
    steps: List[TraceStep] = Field(..., min_length=1)
    outcome: TraceOutcome
    created_at: datetime = Field(default_factory=_utcnow)

    def act_tool_calls(self) -> List[str]:
        """Tool names from every act step, in call order."""
        calls: List[str] = []
        for step in self.steps:
            if step.phase == StepPhase.ACT and step.tool_calls:
                calls.extend(step.tool_calls)
        return calls


class Feedback(BaseSchema):
    """External quality score for a request."""

    id: str = Field(default_factory=_new_id, min_length=1, max_length=EXTERNAL_ID_MAX_LENGTH)
    request_id: str = Field(..., min_length=1)
    score: float = Field(..., ge=0.0, le=1.0)
    automated: bool = False
    created_at: datetime = Field(default_factory=_utcnow)


class PatternRecord(BaseSchema):
    """Persisted pattern as returned by a repository."""

    id: str
    fingerprint: str
    domain: str
    task_type: str
    tags: List[str] = Field(default_factory=list)
    tool_sequence: List[str] = Field(default_factory=list)
    agent_types: List[str] = Field(default_factory=list)
    embedding: Optional[List[float]] = Field(default=None, exclude=True)
    reward_score: float = Field(..., ge=0.0, le=1.0)
    usage_count: int = Field(..., ge=0)
    created_at: datetime
    last_used_at: datetime
    spike_potential: float = Field(default=0.0, ge=0.0, le=1.0)
    potential_updated_at: Optional[datetime] = None
    last_spike_at: Optional[datetime] = None
    mincut_partition: Optional[int] = None
    coherence_score: float = 0.0


class PatternUpsert(BaseSchema):
    """Values for an insert-or-blend pattern upsert."""

    fingerprint: str
    domain: str
    task_type: str
    tags: List[str]
    tool_sequence: List[str]
    agent_type: str
    embedding: List[float]
    observed_reward: float = Field(default=0.5, ge=0.0, le=1.0)
    observed_at: datetime


class UpsertOutcome(BaseSchema):
    pattern: PatternRecord
    created: bool


class TraceWrite(BaseSchema):
    """Result of appending a trace; outcome is set when a pattern was upserted."""

    inserted: bool
    outcome: Optional[UpsertOutcome] = None


class TraceRecordResult(BaseSchema):
    trace_id: str
    pattern_id: Optional[str] = None
    fingerprint: Optional[str] = None
    created: bool = False
    duplicate: bool = Field(default=False, description="Trace id was already recorded; nothing changed")
    pattern_skipped: Optional[str] = Field(default=None, description="Why a successful trace produced no pattern")


class FeedbackResult(BaseSchema):
    feedback_id: str
    patterns_updated: int = 0


class PatternMatch(BaseSchema):
    """Pattern surfaced to an agent's think step."""

    pattern_id: str
    task_type: str
    domain: str
    tool_sequence: List[str]
    reward_score: float
    usage_count: int
    fingerprint: str
    similarity: float
    last_used_at: datetime


class Stats(BaseSchema):
    total_patterns: int = 0
    total_traces: int = 0
    avg_reward: float = 0.0
    source: str = Field(default="store", description="store | local")


class PatternLinkRecord(BaseSchema):
    source_id: str
    target_id: str
    weight: float = Field(..., gt=0.0, le=1.0)
    co_occurrences: int = 0
    plasticity_weight: float = Field(default=1.0, gt=0.0)
    spike_count: int = 0
    last_activation: Optional[datetime] = None
    target_last_spike_at: Optional[datetime] = Field(
        default=None,
        exclude=True,
        description="Last spike of the target, set by outgoing_links() for plasticity timing",
    )

    @property
    def effective_weight(self) -> float:
        return self.weight * self.plasticity_weight


class SpikeEvent(BaseSchema):
    pattern_id: str
    new_potential: float
    did_fire: bool
    depth: int = 0


class SpikeCandidate(BaseSchema):
    """Pattern scored against a query, with its activation state."""

    pattern_id: str
    similarity: float
    spike_potential: float
    potential_updated_at: Optional[datetime] = None


class AnomalyRecord(BaseSchema):
    pattern_id: str
    spike_rate: float
    mean_rate: float
    stddev_rate: float
    anomaly_score: float


class AttentionWeight(BaseSchema):
    pattern_id: str
    similarity: float
    potential: float
    attention_score: float
    normalized_weight: float


class FiringPattern(BaseSchema):
    pattern_id: str
    potential: float
    last_spike_at: Optional[datetime] = None


class NetworkState(BaseSchema):
    domain: str
    total_neurons: int = 0
    active_neurons: int = 0
    avg_potential: float = 0.0
    recent_spikes: int = 0
    top_firing_patterns: List[FiringPattern] = Field(default_factory=list)


class LinkBuildResult(BaseSchema):
    domain: str
    traces_scanned: int = 0
    links_upserted: int = 0
    components: int = 0
    connected: bool = False


class GraphNode(BaseSchema):
    """Pattern embedding and cluster assignment used by graph analysis."""

    pattern_id: str
    embedding: List[float]
    mincut_partition: Optional[int] = None


class MincutResult(BaseSchema):
    domain: str
    cut_value: float = 0.0
    partition_a: List[str] = Field(default_factory=list)
    partition_b: List[str] = Field(default_factory=list)


class PatternCluster(BaseSchema):
    cluster_id: int
    pattern_ids: List[str]
    coherence_score: float = 0.0


class NoveltyScore(BaseSchema):
    pattern_id: str
    max_similarity_to_cluster: float = 0.0
    is_novel: bool
    nearest_cluster_id: Optional[int] = None


class PatternImportance(BaseSchema):
    pattern_id: str
    importance: float
