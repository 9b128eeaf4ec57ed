"""Agent type -> task type -> domain mapping.

The mapping is an explicit table over the closed set of analyst agents.
Agent identifiers may carry the "cfa-" deployment prefix. Anything not in
the table is rejected rather than guessed; the pattern store still appends
such traces, it only derives no pattern from them.
"""

from __future__ import annotations

from enum import Enum

from reasonbank.core.errors import RecordValidationError

DOMAIN_PREFIX = "cfa-"


class AgentType(str, Enum):
    CHIEF_ANALYST = "chief-analyst"
    EQUITY_ANALYST = "equity-analyst"
    CREDIT_ANALYST = "credit-analyst"
    FIXED_INCOME_ANALYST = "fixed-income-analyst"
    DERIVATIVES_ANALYST = "derivatives-analyst"
    QUANT_RISK_ANALYST = "quant-risk-analyst"
    MACRO_ANALYST = "macro-analyst"
    ESG_REGULATORY_ANALYST = "esg-regulatory-analyst"
    PRIVATE_MARKETS_ANALYST = "private-markets-analyst"
    PIPELINE = "pipeline"


class TaskType(str, Enum):
    VALUATION = "valuation"
    CREDIT_ASSESSMENT = "credit_assessment"
    RISK_ANALYSIS = "risk_analysis"
    MACRO_RESEARCH = "macro_research"
    ESG_REVIEW = "esg_review"
    DEAL_ANALYSIS = "deal_analysis"
    PORTFOLIO_CONSTRUCTION = "portfolio_construction"
    REGULATORY_CHECK = "regulatory_check"


AGENT_TASK_TYPES: dict[AgentType, TaskType] = {
    AgentType.CHIEF_ANALYST: TaskType.VALUATION,
    AgentType.EQUITY_ANALYST: TaskType.VALUATION,
    AgentType.CREDIT_ANALYST: TaskType.CREDIT_ASSESSMENT,
    AgentType.FIXED_INCOME_ANALYST: TaskType.VALUATION,
    AgentType.DERIVATIVES_ANALYST: TaskType.VALUATION,
    AgentType.QUANT_RISK_ANALYST: TaskType.RISK_ANALYSIS,
    AgentType.MACRO_ANALYST: TaskType.MACRO_RESEARCH,
    AgentType.ESG_REGULATORY_ANALYST: TaskType.ESG_REVIEW,
    AgentType.PRIVATE_MARKETS_ANALYST: TaskType.DEAL_ANALYSIS,
    AgentType.PIPELINE: TaskType.VALUATION,
}


def parse_agent_type(agent_type: str) -> AgentType:
    key = (agent_type or "").strip().lower()
    if key.startswith(DOMAIN_PREFIX):
        key = key[len(DOMAIN_PREFIX):]
    try:
        return AgentType(key)
    except ValueError:
        raise RecordValidationError(f"Unknown agent type '{agent_type}'") from None


def parse_task_type(task_type: str) -> TaskType:
    try:
        return TaskType((task_type or "").strip().lower())
    except ValueError:
        raise RecordValidationError(f"Unknown task type '{task_type}'") from None


def task_type_for_agent(agent_type: str) -> TaskType:
    return AGENT_TASK_TYPES[parse_agent_type(agent_type)]


def domain_for_task_type(task_type: TaskType | str) -> str:
    """valuation -> cfa-valuation, credit_assessment -> cfa-credit-assessment."""
    tt = task_type if isinstance(task_type, TaskType) else parse_task_type(task_type)
    return f"{DOMAIN_PREFIX}{tt.value.replace('_', '-')}"


def all_domains() -> list[str]:
    return [domain_for_task_type(tt) for tt in TaskType]
