"""
Pattern Store Tests
===================

Trace recording, fingerprint upserts, feedback blending and retrieval over
the in-memory repository with the hashing embedder.
"""

from datetime import datetime, timedelta, timezone

import pytest

from reasonbank.core.errors import EmbeddingQualityError, RecordValidationError
from reasonbank.services.pattern_store import (
    FINGERPRINT_LENGTH,
    PatternStore,
    fingerprint,
    pattern_text,
)
from tests.conftest import make_trace


class TestFingerprint:
    def test_is_order_insensitive(self):
        assert fingerprint(["wacc_calculator", "dcf_model"]) == fingerprint(["dcf_model", "wacc_calculator"])

    def test_is_case_and_whitespace_insensitive(self):
        assert fingerprint([" DCF_Model "]) == fingerprint(["dcf_model"])

    def test_length(self):
        assert len(fingerprint(["dcf_model"])) == FINGERPRINT_LENGTH

    def test_different_tool_sets_differ(self):
        assert fingerprint(["dcf_model"]) != fingerprint(["comps_table"])

    def test_pattern_text_sorts_tools(self):
        assert pattern_text("valuation", ["wacc_calculator", "dcf_model"], "equity-analyst") == (
            "valuation analysis pattern: dcf_model wacc_calculator by equity-analyst"
        )


@pytest.mark.asyncio
async def test_same_tools_in_any_order_share_one_pattern(store):
    first = await store.record_trace(make_trace(tools=["wacc_calculator", "dcf_model"]))
    second = await store.record_trace(make_trace(tools=["dcf_model", "wacc_calculator"]))

    assert first.created is True
    assert second.created is False
    assert first.pattern_id == second.pattern_id
    assert first.fingerprint == second.fingerprint

    stats = await store.get_stats()
    assert stats.total_patterns == 1
    assert stats.total_traces == 2


@pytest.mark.asyncio
async def test_repeated_equity_traces_reinforce_one_pattern(store):
    for _ in range(5):
        await store.record_trace(make_trace("equity-analyst", ["wacc_calculator", "dcf_model"]))

    stats = await store.get_stats()
    assert stats.total_patterns == 1
    assert stats.total_traces == 5

    matches = await store.search_for_task("valuation", 10)
    assert len(matches) == 1
    match = matches[0]
    assert match.usage_count == 5
    assert match.domain == "cfa-valuation"
    assert match.reward_score == pytest.approx(0.5)
    assert sorted(match.tool_sequence) == ["dcf_model", "wacc_calculator"]


@pytest.mark.asyncio
async def test_credit_feedback_raises_reward(store):
    trace = make_trace("credit-analyst", ["credit_metrics", "altman_zscore"], request_id="req-credit-1")
    recorded = await store.record_trace(trace)

    result = await store.record_feedback({"request_id": "req-credit-1", "score": 1.0})
    assert result.patterns_updated == 1

    pattern = await store.get_pattern(recorded.pattern_id)
    assert pattern.domain == "cfa-credit-assessment"
    assert pattern.reward_score > 0.5
    assert pattern.reward_score == pytest.approx(0.65)


@pytest.mark.asyncio
async def test_feedback_moves_reward_toward_score(store):
    recorded = await store.record_trace(make_trace(request_id="req-1"))
    before = (await store.get_pattern(recorded.pattern_id)).reward_score

    await store.record_feedback({"request_id": "req-1", "score": 1.0})
    after_high = (await store.get_pattern(recorded.pattern_id)).reward_score
    assert after_high >= before

    await store.record_feedback({"request_id": "req-1", "score": 0.0})
    after_low = (await store.get_pattern(recorded.pattern_id)).reward_score
    assert after_low <= after_high


@pytest.mark.asyncio
async def test_feedback_for_unknown_request_updates_nothing(store):
    await store.record_trace(make_trace(request_id="req-known"))
    result = await store.record_feedback({"request_id": "req-unknown", "score": 0.9})
    assert result.patterns_updated == 0


@pytest.mark.asyncio
async def test_feedback_score_out_of_range_is_rejected(store):
    with pytest.raises(RecordValidationError):
        await store.record_feedback({"request_id": "req-1", "score": 1.5})


@pytest.mark.asyncio
async def test_failed_trace_is_stored_without_pattern(store):
    result = await store.record_trace(make_trace(outcome="failure"))

    assert result.pattern_id is None
    stats = await store.get_stats()
    assert stats.total_patterns == 0
    assert stats.total_traces == 1


@pytest.mark.asyncio
async def test_trace_without_tool_calls_is_stored_without_pattern(store):
    result = await store.record_trace(make_trace(tools=()))

    assert result.pattern_id is None
    assert (await store.get_stats()).total_traces == 1


@pytest.mark.asyncio
async def test_redelivered_trace_is_stored_once(store):
    trace = make_trace()
    first = await store.record_trace(trace)
    second = await store.record_trace(trace)

    assert first.duplicate is False
    assert second.duplicate is True
    assert second.pattern_id is None

    stats = await store.get_stats()
    assert stats.total_traces == 1
    pattern = await store.get_pattern(first.pattern_id)
    assert pattern.usage_count == 1


@pytest.mark.asyncio
async def test_redelivered_trace_leaves_reward_untouched(store):
    trace = make_trace(request_id="req-redeliver")
    first = await store.record_trace(trace)
    await store.record_feedback({"request_id": "req-redeliver", "score": 1.0})
    rewarded = (await store.get_pattern(first.pattern_id)).reward_score

    await store.record_trace(trace)

    pattern = await store.get_pattern(first.pattern_id)
    assert pattern.usage_count == 1
    assert pattern.reward_score == pytest.approx(rewarded)


@pytest.mark.asyncio
async def test_unknown_agent_trace_is_stored_without_pattern(store):
    result = await store.record_trace(make_trace(agent_type="portfolio-manager"))

    assert result.pattern_id is None
    assert result.pattern_skipped == "unknown_agent_type"
    stats = await store.get_stats()
    assert stats.total_traces == 1
    assert stats.total_patterns == 0


@pytest.mark.asyncio
async def test_unknown_agent_failure_trace_is_not_flagged(store):
    result = await store.record_trace(make_trace(agent_type="portfolio-manager", outcome="failure"))

    assert result.pattern_skipped is None
    assert (await store.get_stats()).total_traces == 1


@pytest.mark.asyncio
async def test_caller_mutating_trace_after_recording_keeps_feedback_match(store):
    trace = make_trace(request_id="req-first")
    recorded = await store.record_trace(trace)

    trace.request_id = "req-mutated"

    result = await store.record_feedback({"request_id": "req-first", "score": 1.0})
    assert result.patterns_updated == 1
    miss = await store.record_feedback({"request_id": "req-mutated", "score": 0.0})
    assert miss.patterns_updated == 0
    assert (await store.get_pattern(recorded.pattern_id)).reward_score == pytest.approx(0.65)


@pytest.mark.asyncio
async def test_returned_patterns_do_not_alias_stored_state(store, repository):
    recorded = await store.record_trace(make_trace())

    pattern = await store.get_pattern(recorded.pattern_id)
    pattern.usage_count = 99
    pattern.tool_sequence.append("injected_tool")

    listed = await repository.list_patterns("cfa-valuation")
    listed[0].reward_score = 0.0

    fresh = await store.get_pattern(recorded.pattern_id)
    assert fresh.usage_count == 1
    assert "injected_tool" not in fresh.tool_sequence
    assert fresh.reward_score == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_malformed_trace_is_rejected(store):
    with pytest.raises(RecordValidationError):
        await store.record_trace({"agent_type": "equity-analyst", "steps": [], "outcome": "success"})


@pytest.mark.asyncio
async def test_bad_embedding_rejects_trace_before_any_write(repository, executor):
    async def broken_embed(text: str):
        return [0.0] * 384

    store = PatternStore(repository, embed_fn=broken_embed, executor=executor)

    with pytest.raises(EmbeddingQualityError):
        await store.record_trace(make_trace())

    stats = await store.get_stats()
    assert stats.total_patterns == 0
    assert stats.total_traces == 0


@pytest.mark.asyncio
async def test_agent_types_accumulate_on_shared_pattern(store):
    first = await store.record_trace(make_trace("equity-analyst", ["dcf_model"]))
    await store.record_trace(make_trace("cfa-chief-analyst", ["dcf_model"]))
    await store.record_trace(make_trace("equity-analyst", ["dcf_model"]))

    pattern = await store.get_pattern(first.pattern_id)
    assert pattern.agent_types == ["equity-analyst", "chief-analyst"]
    assert pattern.usage_count == 3
    assert pattern.tags == ["equity-analyst", "valuation"]


@pytest.mark.asyncio
async def test_tool_sequence_keeps_first_call_order(store):
    result = await store.record_trace(make_trace(tools=["wacc_calculator", "dcf_model", "wacc_calculator"]))
    pattern = await store.get_pattern(result.pattern_id)
    assert pattern.tool_sequence == ["wacc_calculator", "dcf_model"]


@pytest.mark.asyncio
async def test_last_used_at_advances(store):
    first = await store.record_trace(make_trace())
    created = await store.get_pattern(first.pattern_id)

    await store.record_trace(make_trace(created_at=datetime.now(timezone.utc) + timedelta(seconds=1)))
    updated = await store.get_pattern(first.pattern_id)
    assert updated.last_used_at >= created.last_used_at


@pytest.mark.asyncio
async def test_search_is_domain_scoped(store):
    await store.record_trace(make_trace("equity-analyst", ["dcf_model"]))
    await store.record_trace(make_trace("credit-analyst", ["ratio_analyzer"]))

    valuation = await store.search_for_task("valuation")
    credit = await store.search_for_task("credit_assessment")
    macro = await store.search_for_task("macro_research")

    assert [m.domain for m in valuation] == ["cfa-valuation"]
    assert [m.domain for m in credit] == ["cfa-credit-assessment"]
    assert macro == []


@pytest.mark.asyncio
async def test_search_limit_and_similarity_floor(store):
    for tools in (["dcf_model"], ["comps_table"], ["wacc_calculator"]):
        await store.record_trace(make_trace("equity-analyst", tools))

    assert len(await store.search_patterns("valuation analysis pattern", "cfa-valuation", limit=2)) == 2
    assert await store.search_patterns("valuation analysis pattern", "cfa-valuation", limit=0) == []
    assert await store.search_patterns(
        "valuation analysis pattern", "cfa-valuation", limit=10, min_similarity=0.999
    ) == []


@pytest.mark.asyncio
async def test_search_orders_by_similarity(store):
    await store.record_trace(make_trace("equity-analyst", ["dcf_model"]))
    await store.record_trace(make_trace("equity-analyst", ["comps_table", "peer_screener", "multiples_engine"]))

    matches = await store.search_patterns("valuation dcf model", "cfa-valuation", limit=10, min_similarity=-1.0)
    assert len(matches) == 2
    assert matches[0].similarity >= matches[1].similarity
    assert matches[0].tool_sequence == ["dcf_model"]


@pytest.mark.asyncio
async def test_get_unknown_pattern_returns_none(store):
    assert await store.get_pattern("00000000-0000-0000-0000-000000000000") is None


@pytest.mark.asyncio
async def test_unknown_task_type_search_is_rejected(store):
    with pytest.raises(RecordValidationError):
        await store.search_for_task("fortune_telling")


@pytest.mark.asyncio
async def test_health_check(store):
    assert await store.health_check() is True
