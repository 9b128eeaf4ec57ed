"""Spike-rate anomaly detection.

Per-pattern spike counts over a trailing window are compared with the
domain's mean and population standard deviation. A domain whose rates are
all identical (stddev 0) has no anomalies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np

from reasonbank.core.config import settings
from reasonbank.core.retry import ResilientQueryExecutor
from reasonbank.repositories.base import PatternRepository
from reasonbank.schemas.learning import AnomalyRecord

logger = logging.getLogger(__name__)


def score_anomalies(rates: dict[str, float], z_threshold: float) -> list[AnomalyRecord]:
    """Z-score each rate against the population; keep |z| > z_threshold."""
    if len(rates) < 2:
        return []

    ids = list(rates)
    values = np.asarray([rates[i] for i in ids], dtype=np.float64)
    mean = float(values.mean())
    std = float(values.std())
    if std == 0.0:
        return []

    out: list[AnomalyRecord] = []
    for pid, rate in zip(ids, values):
        z = (float(rate) - mean) / std
        if abs(z) > z_threshold:
            out.append(
                AnomalyRecord(
                    pattern_id=pid,
                    spike_rate=float(rate),
                    mean_rate=mean,
                    stddev_rate=std,
                    anomaly_score=z,
                )
            )

    out.sort(key=lambda a: (-abs(a.anomaly_score), a.pattern_id))
    return out


class AnomalyDetector:
    def __init__(self, repository: PatternRepository, *, executor: Optional[ResilientQueryExecutor] = None):
        self.repository = repository
        self.executor = executor or ResilientQueryExecutor()

    async def detect_anomalies(
        self,
        domain: str,
        window_seconds: Optional[int] = None,
        z_threshold: Optional[float] = None,
    ) -> list[AnomalyRecord]:
        """
        Patterns whose spike rate deviates from the domain mean.

        Args:
            domain: Domain to analyse
            window_seconds: Trailing window (spike rate = spikes per window)
            z_threshold: Minimum |z| to report

        Returns:
            Anomalies sorted by descending |anomaly_score|
        """
        window = int(window_seconds or settings.ANOMALY_WINDOW_SECONDS)
        threshold = settings.ANOMALY_Z_THRESHOLD if z_threshold is None else float(z_threshold)
        since = datetime.now(timezone.utc) - timedelta(seconds=window)

        counts = await self.executor.run(
            lambda: self.repository.spike_counts(domain, since),
            name="detect_anomalies",
        )
        anomalies = score_anomalies({pid: float(c) for pid, c in counts.items()}, threshold)
        if anomalies:
            logger.info(f"Detected {len(anomalies)} spike-rate anomalies in {domain} (window={window}s)")
        return anomalies
