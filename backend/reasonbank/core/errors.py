"""Error taxonomy for the learning core.

- RecordValidationError: malformed trace/feedback, rejected without retry
- EmbeddingQualityError: embedding guard rejection, raised before any I/O
- StoreTransientError: retryable backing-store fault
- StoreUnavailable: retries exhausted, callers degrade
- NotFound: expected absence
"""

from __future__ import annotations

from typing import Optional


class LearningError(Exception):
    """Base class for all learning core failures."""


class RecordValidationError(LearningError):
    """A Trace or Feedback record is malformed."""


class EmbeddingQualityError(LearningError):
    """An embedding failed the quality guard.

    Attributes:
        reason: Short machine-readable reason (empty/low_variance/norm_out_of_range)
        variance: Component variance of the rejected vector
        l2_norm: L2 norm of the rejected vector
    """

    def __init__(self, message: str, *, reason: str, variance: float, l2_norm: float):
        super().__init__(message)
        self.reason = reason
        self.variance = variance
        self.l2_norm = l2_norm


class StoreTransientError(LearningError):
    """A retryable store fault (connection reset, index rebuild, recovery)."""


class StoreUnavailable(LearningError):
    """The store could not be reached within the retry budget."""

    def __init__(self, message: str, *, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class NotFound(LearningError):
    """Expected absence of a record."""


class PatternNotFound(NotFound):
    def __init__(self, pattern_id: str):
        super().__init__(f"Pattern '{pattern_id}' not found")
        self.pattern_id = pattern_id
