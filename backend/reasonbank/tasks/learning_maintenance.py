"""Celery jobs for the spiking network.

- rebuild_pattern_links_task: batch link rebuild from trace co-occurrence
- decay_spike_potentials_task: persists the lazily-applied potential decay

Both run per domain; without an explicit domain they cover
LEARNING_MAINTENANCE_DOMAINS, or every known domain when that is empty.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from celery import shared_task

from reasonbank.core.celery_app import celery_app
from reasonbank.core.config import settings
from reasonbank.core.database import dispose_engine
from reasonbank.repositories import create_repository
from reasonbank.repositories.base import PatternRepository
from reasonbank.services.spike_network import SpikeNetwork
from reasonbank.services.task_types import all_domains

logger = logging.getLogger(__name__)


def _run_async(coro):
    try:
        loop = asyncio.get_event_loop()
    except RuntimeError:
        loop = None

    if loop is not None and loop.is_running():
        new_loop = asyncio.new_event_loop()
        try:
            return new_loop.run_until_complete(coro)
        finally:
            new_loop.close()

    return asyncio.run(coro)


def _broker_enabled() -> bool:
    broker = celery_app.conf.broker_url
    return bool(broker) and not str(broker).startswith("memory://")


def _target_domains(domain: Optional[str]) -> list[str]:
    if domain:
        return [domain]
    return list(settings.LEARNING_MAINTENANCE_DOMAINS) or all_domains()


async def rebuild_links_async(repository: PatternRepository, domains: list[str]) -> dict:
    network = SpikeNetwork(repository)
    results = []
    for d in domains:
        result = await network.build_links_from_trajectories(d)
        results.append(result.model_dump())

    return {
        "ok": True,
        "domains_processed": len(domains),
        "results": results,
        "ran_at": datetime.now(timezone.utc).isoformat(),
    }


async def decay_potentials_async(repository: PatternRepository, domains: list[str]) -> dict:
    network = SpikeNetwork(repository)
    decayed = {}
    for d in domains:
        decayed[d] = await network.decay_network(d)

    return {
        "ok": True,
        "domains_processed": len(domains),
        "patterns_decayed": decayed,
        "ran_at": datetime.now(timezone.utc).isoformat(),
    }


async def _with_repository(job, domains: list[str]) -> dict:
    repository = create_repository()
    try:
        return await job(repository, domains)
    finally:
        # Pooled connections are bound to this task's event loop
        if repository.backend == "postgres":
            await dispose_engine()


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="reasonbank.tasks.learning_maintenance.rebuild_pattern_links_task",
)
def rebuild_pattern_links_task(self, domain: Optional[str] = None) -> dict:
    """Rebuild pattern links for one domain (or all maintenance domains)."""

    if not _broker_enabled():
        return {"ok": True, "skipped": True, "reason": "broker_disabled"}

    domains = _target_domains(domain)
    try:
        return _run_async(_with_repository(rebuild_links_async, domains))
    except Exception as exc:
        logger.error("rebuild_pattern_links_task failed", exc_info=exc, extra={"domain": domain})
        raise self.retry(exc=exc)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name="reasonbank.tasks.learning_maintenance.decay_spike_potentials_task",
)
def decay_spike_potentials_task(self, domain: Optional[str] = None) -> dict:
    """Persist potential decay for one domain (or all maintenance domains)."""

    if not _broker_enabled():
        return {"ok": True, "skipped": True, "reason": "broker_disabled"}

    domains = _target_domains(domain)
    try:
        return _run_async(_with_repository(decay_potentials_async, domains))
    except Exception as exc:
        logger.error("decay_spike_potentials_task failed", exc_info=exc, extra={"domain": domain})
        raise self.retry(exc=exc)
