"""Pattern repositories (Postgres + pgvector, in-memory)."""

from typing import Optional

from reasonbank.core.config import settings
from reasonbank.repositories.base import PatternRepository
from reasonbank.repositories.memory import InMemoryPatternRepository
from reasonbank.repositories.postgres import PostgresPatternRepository


def create_repository(backend: Optional[str] = None) -> PatternRepository:
    """Build the repository selected by STORE_BACKEND (or the given override)."""
    name = (backend or settings.STORE_BACKEND or "postgres").strip().lower()
    if name == "memory":
        return InMemoryPatternRepository()
    if name == "postgres":
        return PostgresPatternRepository()
    raise ValueError(f"Unknown store backend '{name}' (expected 'postgres' or 'memory')")


__all__ = [
    "PatternRepository",
    "InMemoryPatternRepository",
    "PostgresPatternRepository",
    "create_repository",
]
