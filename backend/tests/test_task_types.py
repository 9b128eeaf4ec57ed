"""Tests for the agent -> task type -> domain mapping table."""

import pytest

from reasonbank.core.errors import RecordValidationError
from reasonbank.services.task_types import (
    AGENT_TASK_TYPES,
    AgentType,
    TaskType,
    all_domains,
    domain_for_task_type,
    parse_agent_type,
    task_type_for_agent,
)


def test_every_agent_has_a_task_type():
    assert set(AGENT_TASK_TYPES) == set(AgentType)


@pytest.mark.parametrize(
    "agent,expected",
    [
        ("equity-analyst", TaskType.VALUATION),
        ("chief-analyst", TaskType.VALUATION),
        ("fixed-income-analyst", TaskType.VALUATION),
        ("derivatives-analyst", TaskType.VALUATION),
        ("pipeline", TaskType.VALUATION),
        ("esg-regulatory-analyst", TaskType.ESG_REVIEW),
        ("credit-analyst", TaskType.CREDIT_ASSESSMENT),
        ("quant-risk-analyst", TaskType.RISK_ANALYSIS),
        ("macro-analyst", TaskType.MACRO_RESEARCH),
        ("private-markets-analyst", TaskType.DEAL_ANALYSIS),
    ],
)
def test_task_type_for_agent(agent, expected):
    assert task_type_for_agent(agent) == expected


def test_deployment_prefix_and_case_are_ignored():
    assert parse_agent_type("CFA-Equity-Analyst") == AgentType.EQUITY_ANALYST
    assert parse_agent_type("  credit-analyst ") == AgentType.CREDIT_ANALYST


def test_unknown_agent_is_rejected():
    with pytest.raises(RecordValidationError, match="Unknown agent type"):
        parse_agent_type("astrologer")


def test_domain_names():
    assert domain_for_task_type(TaskType.VALUATION) == "cfa-valuation"
    assert domain_for_task_type("credit_assessment") == "cfa-credit-assessment"


def test_unknown_task_type_is_rejected():
    with pytest.raises(RecordValidationError):
        domain_for_task_type("fortune_telling")


def test_all_domains_are_distinct():
    domains = all_domains()
    assert len(domains) == len(TaskType)
    assert len(set(domains)) == len(domains)
