"""Scoring primitives for the learning core.

Pure functions shared by both storage backends and the services:
1. Usage blend - running mean of observed rewards on every re-occurrence
2. Feedback blend - EMA of external quality scores with weight alpha
3. Potential decay - exponential half-life decay of spike potential
4. Softmax - numerically stable normalization for attention weights

All scores are clamped to [0, 1].
"""

import math
from datetime import datetime, timezone
from typing import Optional, Sequence

import numpy as np


def clamp01(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


def blend_usage_reward(old_reward: float, old_usage_count: int, observed: float = 0.5) -> float:
    """Fold one more observation into the running reward.

    reward = (old_reward * old_usage_count + observed) / (old_usage_count + 1)
    """
    count = max(0, int(old_usage_count))
    return clamp01((old_reward * count + observed) / (count + 1))


def blend_feedback(old_reward: float, score: float, alpha: float) -> float:
    """EMA blend of an external score: reward*(1-alpha) + score*alpha."""
    return clamp01(old_reward * (1.0 - alpha) + score * alpha)


def decayed_potential(
    potential: float,
    updated_at: Optional[datetime],
    now: Optional[datetime] = None,
    half_life_seconds: float = 3600.0,
) -> float:
    """Potential after exponential decay since it was last written.

    Args:
        potential: Stored potential
        updated_at: When the stored potential was written
        now: Evaluation time (defaults to now)
        half_life_seconds: Time for the potential to halve; <= 0 disables decay

    Returns:
        Decayed potential in [0, 1]
    """
    if potential <= 0.0 or updated_at is None or half_life_seconds <= 0:
        return clamp01(potential)

    if now is None:
        now = datetime.now(timezone.utc)
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    elapsed = max(0.0, (now - updated_at).total_seconds())
    return clamp01(potential * math.pow(0.5, elapsed / half_life_seconds))


def softmax(scores: Sequence[float]) -> list[float]:
    if not scores:
        return []
    arr = np.asarray(scores, dtype=np.float64)
    # Shift by the max so exp() never overflows
    exp = np.exp(arr - arr.max())
    return (exp / exp.sum()).tolist()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)
