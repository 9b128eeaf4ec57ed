"""Tests for spike-weighted softmax attention."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from reasonbank.core.errors import EmbeddingQualityError
from reasonbank.schemas.learning import SpikeCandidate
from reasonbank.services.attention_ranker import AttentionRanker
from reasonbank.services.embedding_service import EmbeddingService
from tests.conftest import make_trace


def _ranker_over(candidates, executor):
    repository = SimpleNamespace(spike_candidates=AsyncMock(return_value=candidates))
    return AttentionRanker(repository, executor=executor), repository


@pytest.mark.asyncio
async def test_weights_are_normalized_and_sorted(store, repository, executor):
    for tools in (["dcf_model"], ["comps_table"], ["wacc_calculator"]):
        await store.record_trace(make_trace("equity-analyst", tools))

    ranker = AttentionRanker(repository, executor=executor)
    query = EmbeddingService.embed_hashing("valuation dcf model")
    weights = await ranker.compute_spike_attention(query, "cfa-valuation", k=2)

    assert len(weights) == 2
    assert sum(w.normalized_weight for w in weights) == pytest.approx(1.0)
    assert weights[0].normalized_weight >= weights[1].normalized_weight
    for w in weights:
        assert w.attention_score == pytest.approx(w.similarity * (1.0 + w.potential))


@pytest.mark.asyncio
async def test_potential_boosts_equally_similar_pattern(executor):
    now = datetime.now(timezone.utc)
    ranker, _ = _ranker_over(
        [
            SpikeCandidate(pattern_id="cold", similarity=0.5, spike_potential=0.0, potential_updated_at=now),
            SpikeCandidate(pattern_id="warm", similarity=0.5, spike_potential=1.0, potential_updated_at=now),
        ],
        executor,
    )

    weights = await ranker.compute_spike_attention([1.0] + [0.0] * 383, "cfa-valuation", k=2)

    assert [w.pattern_id for w in weights] == ["warm", "cold"]
    assert weights[0].attention_score == pytest.approx(1.0, abs=1e-3)
    assert weights[1].attention_score == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_non_positive_k_returns_empty(executor):
    ranker, repository = _ranker_over([], executor)
    assert await ranker.compute_spike_attention([1.0] + [0.0] * 383, "cfa-valuation", k=0) == []
    repository.spike_candidates.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_candidates_returns_empty(executor):
    ranker, repository = _ranker_over([], executor)
    assert await ranker.compute_spike_attention([1.0] + [0.0] * 383, "cfa-esg-review", k=5) == []
    repository.spike_candidates.assert_awaited_once()


@pytest.mark.asyncio
async def test_bad_query_embedding_is_rejected_before_io(executor):
    ranker, repository = _ranker_over([], executor)

    with pytest.raises(EmbeddingQualityError):
        await ranker.compute_spike_attention([0.1] * 384, "cfa-valuation", k=5)

    repository.spike_candidates.assert_not_awaited()
