"""Pytest configuration.

Settings come from the environment (pydantic-settings). Minimal defaults are
set here before importing the package so unit tests are import-safe without
a local .env: the in-memory store, the deterministic hashing embedder and
zero retry delays.
"""

import os


os.environ.setdefault("APP_NAME", "ReasonBank")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("API_PREFIX", "/api/v1")
os.environ["STORE_BACKEND"] = "memory"
os.environ["EMBEDDING_PROVIDER"] = "hashing"
os.environ["STORE_RETRY_BASE_DELAY_SECONDS"] = "0"
# pydantic-settings parses list[str] from env/.env as JSON; force a safe value
# to keep tests import-safe regardless of local developer .env contents.
os.environ["LEARNING_MAINTENANCE_DOMAINS"] = "[]"

# For Postgres-backed integration tests we want deterministic credentials.
_run_pg = os.environ.get("RUN_POSTGRES_TESTS", "").lower() in {"1", "true", "yes"}
_pg_host = os.environ.get("POSTGRES_TEST_HOST") or "localhost"
_pg_port = os.environ.get("POSTGRES_TEST_PORT") or "5432"
_pg_user = os.environ.get("POSTGRES_TEST_USER") or "reasonbank"
_pg_password = os.environ.get("POSTGRES_TEST_PASSWORD") or "reasonbank_dev_password"
_pg_db = os.environ.get("POSTGRES_TEST_BASE_DB") or "reasonbank"
_test_db_name = os.environ.get("POSTGRES_TEST_DB") or f"{_pg_db}_test"

os.environ.setdefault(
    "TEST_DATABASE_URL",
    f"postgresql+asyncpg://{_pg_user}:{_pg_password}@{_pg_host}:{_pg_port}/{_test_db_name}",
)
os.environ.setdefault(
    "TEST_DATABASE_URL_SYNC",
    f"postgresql://{_pg_user}:{_pg_password}@{_pg_host}:{_pg_port}/{_test_db_name}",
)

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, Optional, Sequence
from urllib.parse import urlparse
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from reasonbank.core.retry import ResilientQueryExecutor, RetryPolicy
from reasonbank.main import create_application
from reasonbank.repositories.memory import InMemoryPatternRepository
from reasonbank.schemas.learning import Trace
from reasonbank.services.embedding_service import EmbeddingService
from reasonbank.services.reasoning_bank import ReasoningBank

TEST_DATABASE_URL = os.environ["TEST_DATABASE_URL"]


async def hashing_embed(text: str) -> list[float]:
    return EmbeddingService.embed_hashing(text)


async def no_sleep(_delay: float) -> None:
    return None


def make_trace(
    agent_type: str = "equity-analyst",
    tools: Sequence[str] = ("wacc_calculator", "dcf_model"),
    outcome: str = "success",
    request_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Trace:
    steps = [
        {"phase": "observe", "content": "Company filings loaded"},
        {"phase": "think", "content": "Pick valuation tools"},
    ]
    if tools:
        steps.append({"phase": "act", "content": "Run tools", "tool_calls": list(tools)})
    steps.append({"phase": "reflect", "content": "Cross-check outputs"})

    return Trace(
        agent_type=agent_type,
        request_id=request_id or f"req-{uuid4().hex[:8]}",
        steps=steps,
        outcome=outcome,
        created_at=created_at or datetime.now(timezone.utc),
    )


@pytest.fixture
def repository() -> InMemoryPatternRepository:
    return InMemoryPatternRepository()


@pytest.fixture
def executor() -> ResilientQueryExecutor:
    return ResilientQueryExecutor(RetryPolicy(max_attempts=3, base_delay_seconds=0.0), sleep=no_sleep)


@pytest.fixture
def bank(repository, executor) -> ReasoningBank:
    return ReasoningBank.from_repository(repository, embed_fn=hashing_embed, executor=executor)


@pytest.fixture
def store(bank):
    return bank.store


@pytest.fixture
def network(bank):
    return bank.network


@pytest_asyncio.fixture
async def client(bank) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over an app bound to the in-memory learning core."""
    app = create_application(bank)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Postgres integration
# ---------------------------------------------------------------------------


def _to_sync_db_url(async_url: str) -> str:
    return async_url.replace("postgresql+asyncpg://", "postgresql://", 1)


async def _can_connect_to_postgres(url: str, timeout_seconds: float = 1.0) -> bool:
    try:
        parsed = urlparse(url.replace("postgresql+asyncpg://", "postgresql://", 1))
        host = parsed.hostname or "localhost"
        port = parsed.port or 5432

        conn = asyncio.open_connection(host, port)
        reader, writer = await asyncio.wait_for(conn, timeout=timeout_seconds)
        writer.close()
        try:
            await writer.wait_closed()
        except Exception:
            pass
        return True
    except Exception:
        return False


async def _require_postgres_or_skip(url: str) -> None:
    if await _can_connect_to_postgres(url):
        return

    message = (
        "Postgres is not reachable for integration tests. "
        "Start a pgvector-enabled Postgres or set POSTGRES_TEST_* to a running instance."
    )

    if _run_pg:
        pytest.fail(f"RUN_POSTGRES_TESTS=1 but {message}")

    pytest.skip(message)


async def _recreate_test_database(test_db_url: str) -> None:
    """Drop+create the test DB so every integration test starts empty."""
    import asyncpg

    parsed = urlparse(_to_sync_db_url(test_db_url))
    host = parsed.hostname or "localhost"
    port = parsed.port or 5432
    user = parsed.username or "reasonbank"
    password = parsed.password or ""
    test_db = (parsed.path or "/").lstrip("/")

    admin_db = os.environ.get("POSTGRES_ADMIN_DB") or "postgres"
    conn = await asyncpg.connect(f"postgresql://{user}:{password}@{host}:{port}/{admin_db}")
    try:
        await conn.execute(
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity WHERE datname = $1 AND pid <> pg_backend_pid()",
            test_db,
        )
        await conn.execute(f'DROP DATABASE IF EXISTS "{test_db}"')
        await conn.execute(f'CREATE DATABASE "{test_db}"')
    finally:
        await conn.close()


@pytest_asyncio.fixture(scope="function")
async def migrated_test_engine():
    """Postgres test database with Alembic migrations applied."""

    await _require_postgres_or_skip(TEST_DATABASE_URL)

    await _recreate_test_database(TEST_DATABASE_URL)

    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
    sync_url = _to_sync_db_url(engine.url.render_as_string(hide_password=False))

    def _upgrade() -> None:
        from alembic import command
        from alembic.config import Config

        backend_dir = Path(__file__).resolve().parents[1]
        cfg = Config(str(backend_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(backend_dir / "alembic"))
        cfg.set_main_option("sqlalchemy.url", sync_url)

        os.environ["ALEMBIC_DATABASE_URL_SYNC"] = sync_url
        command.upgrade(cfg, "head")

    await asyncio.to_thread(_upgrade)

    yield engine

    await engine.dispose()


@pytest.fixture
def pg_session_factory(migrated_test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(migrated_test_engine, class_=AsyncSession, expire_on_commit=False)
