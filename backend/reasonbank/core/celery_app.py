"""Celery application configuration.

- One maintenance queue for the learning batch jobs
- Import-safe defaults (memory broker) for unit tests
"""

from __future__ import annotations

from celery import Celery
from kombu import Queue

from reasonbank.core.config import settings


def _default_broker() -> str:
    # Keep imports safe in dev/tests even without Redis.
    return settings.CELERY_BROKER_URL or "memory://"


def _default_backend() -> str:
    # Cache-like in-memory backend for tests.
    return settings.CELERY_RESULT_BACKEND or "cache+memory://"


celery_app = Celery(
    "reasonbank",
    broker=_default_broker(),
    backend=_default_backend(),
    include=[
        "reasonbank.tasks.learning_maintenance",
    ],
)


celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="q.learning",
    task_queues=(
        Queue("q.learning"),
        Queue("q.maintenance"),
    ),
    task_routes={
        "reasonbank.tasks.learning_maintenance.rebuild_pattern_links_task": {"queue": "q.maintenance"},
        "reasonbank.tasks.learning_maintenance.decay_spike_potentials_task": {"queue": "q.maintenance"},
    },
    beat_schedule={
        "rebuild-pattern-links": {
            "task": "reasonbank.tasks.learning_maintenance.rebuild_pattern_links_task",
            "schedule": 900.0,
            "args": (),
        },
        "decay-spike-potentials": {
            "task": "reasonbank.tasks.learning_maintenance.decay_spike_potentials_task",
            "schedule": 300.0,
            "args": (),
        },
    },
)
