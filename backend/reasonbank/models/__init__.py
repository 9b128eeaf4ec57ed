"""
Database Models
===============

SQLAlchemy ORM models for the learning core.
"""

from reasonbank.models.base import Base, TimestampMixin, UUIDMixin
from reasonbank.models.pattern_link import PatternLink
from reasonbank.models.quality_feedback import QualityFeedback
from reasonbank.models.reasoning_pattern import ReasoningPattern
from reasonbank.models.reasoning_trace import ReasoningTrace
from reasonbank.models.spike_event import SpikeEventLog

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "PatternLink",
    "QualityFeedback",
    "ReasoningPattern",
    "ReasoningTrace",
    "SpikeEventLog",
]
