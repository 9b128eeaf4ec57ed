"""Softmax attention over pattern candidates.

raw = similarity * (1 + potential), softmax-normalized over the top-k
candidates by similarity, so recently reinforced patterns get more weight
than equally similar cold ones.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from reasonbank.core.config import settings
from reasonbank.core.retry import ResilientQueryExecutor
from reasonbank.repositories.base import PatternRepository
from reasonbank.schemas.learning import AttentionWeight
from reasonbank.services.embedding_guard import validate_embedding
from reasonbank.services.scoring import decayed_potential, softmax


class AttentionRanker:
    def __init__(
        self,
        repository: PatternRepository,
        *,
        executor: Optional[ResilientQueryExecutor] = None,
        half_life_seconds: Optional[float] = None,
    ):
        self.repository = repository
        self.executor = executor or ResilientQueryExecutor()
        self.half_life_seconds = (
            settings.SPIKE_DECAY_HALF_LIFE_SECONDS if half_life_seconds is None else half_life_seconds
        )

    async def compute_spike_attention(
        self,
        query_embedding: Sequence[float],
        domain: str,
        k: int = 5,
    ) -> list[AttentionWeight]:
        if k <= 0:
            return []
        validate_embedding(query_embedding)

        candidates = await self.executor.run(
            lambda: self.repository.spike_candidates(query_embedding, domain, k),
            name="spike_attention",
        )
        if not candidates:
            return []

        now = datetime.now(timezone.utc)
        potentials = [
            decayed_potential(c.spike_potential, c.potential_updated_at, now, self.half_life_seconds)
            for c in candidates
        ]
        raw = [c.similarity * (1.0 + pot) for c, pot in zip(candidates, potentials)]
        weights = softmax(raw)

        ranked = [
            AttentionWeight(
                pattern_id=c.pattern_id,
                similarity=c.similarity,
                potential=pot,
                attention_score=score,
                normalized_weight=w,
            )
            for c, pot, score, w in zip(candidates, potentials, raw, weights)
        ]
        ranked.sort(key=lambda a: a.normalized_weight, reverse=True)
        return ranked
