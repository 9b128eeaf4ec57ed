"""
Pydantic Schemas
================

Request/response and record models for the learning core.
"""

from reasonbank.schemas.learning import (
    AnomalyRecord,
    AttentionWeight,
    Feedback,
    FeedbackResult,
    FiringPattern,
    LinkBuildResult,
    NetworkState,
    PatternLinkRecord,
    PatternMatch,
    PatternRecord,
    PatternUpsert,
    SpikeCandidate,
    SpikeEvent,
    Stats,
    StepPhase,
    Trace,
    TraceOutcome,
    TraceRecordResult,
    TraceStep,
    UpsertOutcome,
)

__all__ = [
    "AnomalyRecord",
    "AttentionWeight",
    "Feedback",
    "FeedbackResult",
    "FiringPattern",
    "LinkBuildResult",
    "NetworkState",
    "PatternLinkRecord",
    "PatternMatch",
    "PatternRecord",
    "PatternUpsert",
    "SpikeCandidate",
    "SpikeEvent",
    "Stats",
    "StepPhase",
    "Trace",
    "TraceOutcome",
    "TraceRecordResult",
    "TraceStep",
    "UpsertOutcome",
]
