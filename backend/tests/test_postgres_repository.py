"""
Postgres Repository Statement Tests
===================================

Statement shape and transaction handling of PostgresPatternRepository,
checked against a mocked AsyncSession (no database required).
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import String
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

from reasonbank.models.quality_feedback import QualityFeedback
from reasonbank.models.reasoning_trace import ReasoningTrace
from reasonbank.repositories.postgres import PostgresPatternRepository
from reasonbank.schemas.learning import Feedback, PatternCluster, PatternLinkRecord, PatternUpsert
from tests.conftest import make_trace


class _SessionContext:
    def __init__(self, session):
        self.session = session

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, exc_type, exc, tb):
        return False


def _repository(session) -> PostgresPatternRepository:
    return PostgresPatternRepository(session_factory=lambda: _SessionContext(session))


def _mock_session(*results):
    session = AsyncMock()
    if len(results) == 1:
        session.execute = AsyncMock(return_value=results[0])
    else:
        session.execute = AsyncMock(side_effect=list(results))
    return session


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


def _pattern_row(**overrides):
    now = datetime.now(timezone.utc)
    values = dict(
        id=str(uuid4()),
        fingerprint="0123456789abcdef",
        domain="cfa-valuation",
        task_type="valuation",
        tags=["equity-analyst", "valuation"],
        tool_sequence=["wacc_calculator", "dcf_model"],
        agent_types=["equity-analyst"],
        embedding=None,
        reward_score=0.5,
        usage_count=1,
        created_at=now,
        last_used_at=now,
        spike_potential=0.0,
        potential_updated_at=now,
        last_spike_at=None,
        inserted=True,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _trace_insert_result(inserted_id):
    result = MagicMock()
    result.scalar_one_or_none.return_value = inserted_id
    return result


def _valuation_upsert() -> PatternUpsert:
    return PatternUpsert(
        fingerprint="0123456789abcdef",
        domain="cfa-valuation",
        task_type="valuation",
        tags=["equity-analyst", "valuation"],
        tool_sequence=["wacc_calculator", "dcf_model"],
        agent_type="equity-analyst",
        embedding=[1.0] + [0.0] * 383,
        observed_at=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_record_trace_inserts_trace_then_upserts_pattern():
    trace = make_trace()
    upsert_result = MagicMock()
    upsert_result.one.return_value = _pattern_row(usage_count=3, inserted=False)
    session = _mock_session(_trace_insert_result(trace.id), upsert_result, SimpleNamespace(rowcount=1))
    repo = _repository(session)
    upsert = _valuation_upsert()

    write = await repo.record_trace(trace, fingerprint=upsert.fingerprint, domain=upsert.domain, upsert=upsert)

    assert write.inserted is True
    assert write.outcome.created is False
    assert write.outcome.pattern.usage_count == 3
    assert session.execute.await_count == 3
    session.commit.assert_awaited_once()

    trace_sql = _sql(session.execute.await_args_list[0].args[0])
    assert "INSERT INTO reasoning_traces" in trace_sql
    assert "ON CONFLICT (id) DO NOTHING" in trace_sql
    assert "RETURNING reasoning_traces.id" in trace_sql

    upsert_sql = _sql(session.execute.await_args_list[1].args[0])
    assert "ON CONFLICT (fingerprint) DO UPDATE" in upsert_sql
    assert "usage_count + " in upsert_sql
    assert "xmax = 0" in upsert_sql

    link_sql = _sql(session.execute.await_args_list[2].args[0])
    assert link_sql.startswith("UPDATE reasoning_traces SET")
    assert "pattern_id=" in link_sql


@pytest.mark.asyncio
async def test_redelivered_trace_skips_pattern_upsert():
    session = _mock_session(_trace_insert_result(None))
    repo = _repository(session)
    upsert = _valuation_upsert()

    write = await repo.record_trace(make_trace(), fingerprint=upsert.fingerprint, domain=upsert.domain, upsert=upsert)

    assert write.inserted is False
    assert write.outcome is None
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_record_trace_without_upsert_only_inserts_trace():
    trace = make_trace(outcome="failure")
    session = _mock_session(_trace_insert_result(trace.id))
    repo = _repository(session)

    write = await repo.record_trace(trace)

    assert write.inserted is True
    assert write.outcome is None
    assert session.execute.await_count == 1


def test_trace_and_feedback_ids_are_free_form_strings():
    for table in (ReasoningTrace.__table__, QualityFeedback.__table__):
        column_type = table.c.id.type
        assert isinstance(column_type, String)
        assert column_type.length == 200
    assert "VARCHAR(200)" in str(CreateTable(ReasoningTrace.__table__).compile(dialect=postgresql.dialect()))


@pytest.mark.asyncio
async def test_record_feedback_accepts_non_uuid_id():
    session = _mock_session(SimpleNamespace(rowcount=1), SimpleNamespace(rowcount=1))
    repo = _repository(session)

    assert await repo.record_feedback(Feedback(id="fb-123", request_id="req-1", score=0.9), alpha=0.3) == 1
    insert_stmt = session.execute.await_args_list[0].args[0]
    assert insert_stmt.compile(dialect=postgresql.dialect()).params["id"] == "fb-123"


@pytest.mark.asyncio
async def test_record_feedback_blends_matching_patterns_in_one_update():
    session = _mock_session(SimpleNamespace(rowcount=1), SimpleNamespace(rowcount=2))
    repo = _repository(session)

    updated = await repo.record_feedback(Feedback(request_id="req-1", score=0.9), alpha=0.3)

    assert updated == 2
    update_sql = _sql(session.execute.await_args_list[1].args[0])
    assert update_sql.startswith("UPDATE reasoning_patterns")
    assert "least" in update_sql
    assert "greatest" in update_sql
    assert "reasoning_traces.request_id" in update_sql


@pytest.mark.asyncio
async def test_failed_statement_rolls_back():
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=ConnectionResetError("connection reset"))
    repo = _repository(session)

    with pytest.raises(ConnectionResetError):
        await repo.reset_potentials("cfa-valuation", now=datetime.now(timezone.utc))

    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_reset_potentials_returns_rowcount():
    session = _mock_session(SimpleNamespace(rowcount=4))
    repo = _repository(session)

    assert await repo.reset_potentials("cfa-valuation", now=datetime.now(timezone.utc)) == 4
    sql = _sql(session.execute.await_args.args[0])
    assert "reasoning_patterns.spike_potential >" in sql


@pytest.mark.asyncio
async def test_non_uuid_ids_short_circuit():
    session = _mock_session(SimpleNamespace(rowcount=0))
    repo = _repository(session)
    now = datetime.now(timezone.utc)

    assert await repo.get_pattern("not-a-uuid") is None
    assert await repo.discharge("not-a-uuid", now=now, is_source=True) is None
    assert await repo.add_potential("not-a-uuid", 0.5, now=now, half_life_seconds=3600) is None
    assert await repo.outgoing_links("not-a-uuid") == []
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_discharge_logs_spike_event():
    discharge_result = MagicMock()
    discharge_result.scalar_one_or_none.return_value = "cfa-valuation"
    session = _mock_session(discharge_result, SimpleNamespace(rowcount=1))
    repo = _repository(session)

    domain = await repo.discharge(str(uuid4()), now=datetime.now(timezone.utc), is_source=True)

    assert domain == "cfa-valuation"
    assert "INSERT INTO spike_events" in _sql(session.execute.await_args_list[1].args[0])


@pytest.mark.asyncio
async def test_discharge_unknown_pattern_logs_nothing():
    discharge_result = MagicMock()
    discharge_result.scalar_one_or_none.return_value = None
    session = _mock_session(discharge_result)
    repo = _repository(session)

    assert await repo.discharge(str(uuid4()), now=datetime.now(timezone.utc), is_source=True) is None
    assert session.execute.await_count == 1


@pytest.mark.asyncio
async def test_add_potential_is_a_single_capped_update():
    result = MagicMock()
    result.scalar_one_or_none.return_value = 0.9
    session = _mock_session(result)
    repo = _repository(session)

    value = await repo.add_potential(str(uuid4()), 0.9, now=datetime.now(timezone.utc), half_life_seconds=3600)

    assert value == pytest.approx(0.9)
    sql = _sql(session.execute.await_args.args[0])
    assert sql.startswith("UPDATE reasoning_patterns")
    assert "power" in sql
    assert "RETURNING reasoning_patterns.spike_potential" in sql


@pytest.mark.asyncio
async def test_upsert_links_conflict_target():
    session = _mock_session(SimpleNamespace(rowcount=2))
    repo = _repository(session)
    a, b = str(uuid4()), str(uuid4())

    count = await repo.upsert_links(
        [
            PatternLinkRecord(source_id=a, target_id=b, weight=0.5, co_occurrences=2),
            PatternLinkRecord(source_id=b, target_id=a, weight=0.5, co_occurrences=2),
        ]
    )

    assert count == 2
    sql = _sql(session.execute.await_args.args[0])
    assert "ON CONFLICT (source_id, target_id) DO UPDATE" in sql


@pytest.mark.asyncio
async def test_upsert_no_links_skips_session():
    session = _mock_session(SimpleNamespace(rowcount=0))
    repo = _repository(session)

    assert await repo.upsert_links([]) == 0
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_calls_sql_function():
    result = MagicMock()
    result.mappings.return_value.all.return_value = [
        {
            "pattern_id": uuid4(),
            "fingerprint": "0123456789abcdef",
            "domain": "cfa-valuation",
            "task_type": "valuation",
            "tool_sequence": ["dcf_model"],
            "reward_score": 0.7,
            "usage_count": 4,
            "last_used_at": datetime.now(timezone.utc),
            "similarity": 0.82,
        }
    ]
    session = _mock_session(result)
    repo = _repository(session)

    matches = await repo.search([1.0] + [0.0] * 383, "cfa-valuation", 5, 0.3)

    assert len(matches) == 1
    assert matches[0].similarity == pytest.approx(0.82)
    stmt, params = session.execute.await_args.args
    assert "search_reasoning_patterns" in str(stmt)
    assert params["domain"] == "cfa-valuation"
    assert params["match_limit"] == 5
    assert params["min_similarity"] == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_apply_plasticity_is_a_single_clamped_update():
    result = MagicMock()
    result.scalar_one_or_none.return_value = 1.01
    session = _mock_session(result)
    repo = _repository(session)

    value = await repo.apply_plasticity(
        str(uuid4()), str(uuid4()), 0.01, now=datetime.now(timezone.utc), min_weight=0.1, max_weight=5.0
    )

    assert value == pytest.approx(1.01)
    sql = _sql(session.execute.await_args.args[0])
    assert sql.startswith("UPDATE pattern_links")
    assert "least" in sql
    assert "greatest" in sql
    assert "pattern_links.spike_count + " in sql
    assert "RETURNING pattern_links.plasticity_weight" in sql


@pytest.mark.asyncio
async def test_apply_plasticity_non_uuid_short_circuits():
    session = _mock_session(SimpleNamespace(rowcount=0))
    repo = _repository(session)

    assert await repo.apply_plasticity(
        "not-a-uuid", str(uuid4()), 0.01, now=datetime.now(timezone.utc), min_weight=0.1, max_weight=5.0
    ) is None
    session.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_upsert_links_leaves_plasticity_alone():
    session = _mock_session(SimpleNamespace(rowcount=1))
    repo = _repository(session)

    await repo.upsert_links([PatternLinkRecord(source_id=str(uuid4()), target_id=str(uuid4()), weight=0.5)])

    sql = _sql(session.execute.await_args.args[0])
    update_clause = sql.split("DO UPDATE SET", 1)[1]
    assert "plasticity_weight" not in update_clause
    assert "spike_count" not in update_clause


@pytest.mark.asyncio
async def test_outgoing_links_carry_target_last_spike():
    link = SimpleNamespace(
        source_id=uuid4(),
        target_id=uuid4(),
        weight=0.8,
        co_occurrences=3,
        plasticity_weight=1.5,
        spike_count=2,
        last_activation=None,
    )
    fired_at = datetime.now(timezone.utc)
    result = MagicMock()
    result.all.return_value = [(link, fired_at)]
    session = _mock_session(result)
    repo = _repository(session)

    links = await repo.outgoing_links(str(link.source_id))

    assert len(links) == 1
    assert links[0].target_last_spike_at == fired_at
    assert links[0].effective_weight == pytest.approx(1.2)
    assert "JOIN reasoning_patterns" in _sql(session.execute.await_args.args[0])


@pytest.mark.asyncio
async def test_assign_partitions_clears_domain_then_sets_clusters():
    session = _mock_session(SimpleNamespace(rowcount=3), SimpleNamespace(rowcount=2), SimpleNamespace(rowcount=1))
    repo = _repository(session)
    clusters = [
        PatternCluster(cluster_id=0, pattern_ids=[str(uuid4()), str(uuid4())], coherence_score=1.9),
        PatternCluster(cluster_id=1, pattern_ids=[str(uuid4()), "not-a-uuid"], coherence_score=0.0),
    ]

    assert await repo.assign_partitions("cfa-valuation", clusters) == 3
    assert session.execute.await_count == 3
    session.commit.assert_awaited_once()
    clear_sql = _sql(session.execute.await_args_list[0].args[0])
    assert clear_sql.startswith("UPDATE reasoning_patterns SET")
    assert "mincut_partition" in clear_sql
