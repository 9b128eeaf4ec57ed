"""Embedding quality guard.

Validates embedding vectors before they are stored or used for search.
Provider failures degrade silently to zero or near-constant vectors (see
EmbeddingService); those must never reach the pattern table.

Checks:
1. Non-empty vector.
2. Component variance >= EMBEDDING_MIN_VARIANCE (0.001). Near-constant
   vectors indicate a broken embedding call.
3. L2 norm within [EMBEDDING_NORM_MIN, EMBEDDING_NORM_MAX] (0.8..1.2).
   Sentence-embedding models emit unit-normalized vectors.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Sequence

import numpy as np

from reasonbank.core.config import settings
from reasonbank.core.errors import EmbeddingQualityError


def _context_suffix(context: Optional[str]) -> str:
    if not context:
        return ""
    return f' for text "{context[:50]}..."'


def embedding_stats(vector: Sequence[float]) -> tuple[float, float]:
    """Return (variance, l2_norm) of a vector."""
    arr = np.asarray(vector, dtype=np.float64)
    if arr.size == 0:
        return 0.0, 0.0
    return float(arr.var()), float(np.linalg.norm(arr))


def validate_embedding(
    vector: Sequence[float],
    context: Optional[str] = None,
    *,
    min_variance: Optional[float] = None,
    norm_min: Optional[float] = None,
    norm_max: Optional[float] = None,
) -> None:
    """
    Validate an embedding vector for quality.

    Args:
        vector: Embedding to check
        context: Optional source text, included in the error message

    Raises:
        EmbeddingQualityError: If the vector is empty, near-constant or off-norm
    """
    min_variance = settings.EMBEDDING_MIN_VARIANCE if min_variance is None else min_variance
    norm_min = settings.EMBEDDING_NORM_MIN if norm_min is None else norm_min
    norm_max = settings.EMBEDDING_NORM_MAX if norm_max is None else norm_max

    arr = np.asarray(vector, dtype=np.float64)
    if arr.ndim != 1 or arr.size == 0:
        raise EmbeddingQualityError(
            "Empty embedding vector",
            reason="empty",
            variance=0.0,
            l2_norm=0.0,
        )

    if not np.all(np.isfinite(arr)):
        raise EmbeddingQualityError(
            f"Embedding contains non-finite values{_context_suffix(context)}",
            reason="non_finite",
            variance=float("nan"),
            l2_norm=float("nan"),
        )

    variance, l2_norm = embedding_stats(arr)

    if variance < min_variance:
        raise EmbeddingQualityError(
            f"Embedding variance too low ({variance:.6f}){_context_suffix(context)}. "
            "Embedding provider may have fallen back to a constant vector.",
            reason="low_variance",
            variance=variance,
            l2_norm=l2_norm,
        )

    if l2_norm < norm_min or l2_norm > norm_max:
        raise EmbeddingQualityError(
            f"Embedding L2 norm out of range ({l2_norm:.4f}, expected "
            f"[{norm_min}, {norm_max}]){_context_suffix(context)}.",
            reason="norm_out_of_range",
            variance=variance,
            l2_norm=l2_norm,
        )


async def compute_validated_embedding(
    compute_fn: Callable[[str], Awaitable[Sequence[float]]],
    text: str,
) -> list[float]:
    """
    Compute an embedding and guard it before any I/O.

    Raises:
        EmbeddingQualityError: If the embedding fails quality checks
    """
    vector = await compute_fn(text)
    validate_embedding(vector, text)
    return [float(x) for x in vector]
