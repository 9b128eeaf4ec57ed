"""Spiking activation network over learned patterns.

Each pattern carries a potential in [0, 1]. Firing a pattern discharges it
to 0 and pushes each outgoing link's weight into its target; a target that
reaches the threshold fires in turn. Propagation is breadth-first over an
explicit queue with a visited set keyed by pattern id, so cycles in the link
graph terminate and no pattern fires twice in one wave. A depth bound caps
the wave.

Links are plastic. Each traversal of a link adjusts its plasticity weight
by spike timing: a target that fires because of the link strengthens it,
a target that already fired shortly before weakens it with an exponential
falloff in the gap. The charge a link delivers is weight * plasticity.

Potentials decay with a half-life measured from their last write. Decay is
applied lazily by every read and write path and persisted periodically by
decay_network() (see the maintenance tasks).

Known limitation: two concurrent waves touching overlapping subgraphs are
not isolated from each other. Each individual potential update is atomic at
the store; a wave is not.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from itertools import permutations
from typing import Optional

from reasonbank.core.config import settings
from reasonbank.core.errors import PatternNotFound
from reasonbank.core.metrics import spikes_fired_total
from reasonbank.core.retry import ResilientQueryExecutor
from reasonbank.repositories.base import PatternRepository
from reasonbank.schemas.learning import (
    FiringPattern,
    LinkBuildResult,
    NetworkState,
    PatternLinkRecord,
    SpikeEvent,
)
from reasonbank.services.scoring import decayed_potential

logger = logging.getLogger(__name__)

ACTIVE_POTENTIAL = 0.1
RECENT_SPIKES_WINDOW = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def stdp_delta(
    target_fired: bool,
    target_last_spike_at: Optional[datetime],
    now: datetime,
    *,
    window_seconds: float,
    tau_seconds: float,
    potentiation: float,
    depression: float,
) -> float:
    """Plasticity change for one traversal of a link."""
    if target_fired:
        return potentiation
    if target_last_spike_at is None:
        return 0.0
    gap = (now - target_last_spike_at).total_seconds()
    if gap < 0 or gap > window_seconds:
        return 0.0
    return -depression * math.exp(-gap / tau_seconds)


def co_occurrence_links(pattern_sequence: list[str], window: int) -> list[PatternLinkRecord]:
    """Derive links from an ordered sequence of trace pattern ids.

    The sequence is cut into sliding windows of `window` consecutive traces.
    Two patterns are linked (both directions) when they share a window; the
    weight is the Jaccard overlap of their window sets, so it lies in (0, 1].
    """
    n = len(pattern_sequence)
    if n == 0:
        return []

    window = max(2, int(window))
    window_count = max(1, n - window + 1)
    windows_of: dict[str, set[int]] = defaultdict(set)
    for idx in range(window_count):
        for pid in pattern_sequence[idx: idx + window]:
            windows_of[pid].add(idx)

    pairs: set[tuple[str, str]] = set()
    for idx in range(window_count):
        members = sorted(set(pattern_sequence[idx: idx + window]))
        pairs.update(permutations(members, 2))

    links: list[PatternLinkRecord] = []
    for source, target in sorted(pairs):
        shared = windows_of[source] & windows_of[target]
        union = windows_of[source] | windows_of[target]
        links.append(
            PatternLinkRecord(
                source_id=source,
                target_id=target,
                weight=len(shared) / len(union),
                co_occurrences=len(shared),
            )
        )
    return links


def components_of(nodes: set[str], links: list[PatternLinkRecord]) -> list[set[str]]:
    """Connected components of the undirected view of the link graph."""
    parent: dict[str, str] = {n: n for n in nodes}

    def find(x: str) -> str:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    for link in links:
        for pid in (link.source_id, link.target_id):
            parent.setdefault(pid, pid)
        a, b = find(link.source_id), find(link.target_id)
        if a != b:
            parent[b] = a

    groups: dict[str, set[str]] = defaultdict(set)
    for pid in parent:
        groups[find(pid)].add(pid)
    return sorted(groups.values(), key=lambda g: (-len(g), sorted(g)[0]))


class SpikeNetwork:
    def __init__(
        self,
        repository: PatternRepository,
        *,
        executor: Optional[ResilientQueryExecutor] = None,
        threshold: Optional[float] = None,
        max_depth: Optional[int] = None,
        half_life_seconds: Optional[float] = None,
        link_window: Optional[int] = None,
        stdp_window_seconds: Optional[float] = None,
        stdp_tau_seconds: Optional[float] = None,
        stdp_potentiation: Optional[float] = None,
        stdp_depression: Optional[float] = None,
    ):
        self.repository = repository
        self.executor = executor or ResilientQueryExecutor()
        self.threshold = settings.SPIKE_THRESHOLD if threshold is None else threshold
        self.max_depth = settings.SPIKE_MAX_DEPTH if max_depth is None else max_depth
        self.half_life_seconds = (
            settings.SPIKE_DECAY_HALF_LIFE_SECONDS if half_life_seconds is None else half_life_seconds
        )
        self.link_window = settings.LINK_TRACE_WINDOW if link_window is None else link_window
        self.stdp_window_seconds = (
            settings.STDP_WINDOW_SECONDS if stdp_window_seconds is None else stdp_window_seconds
        )
        self.stdp_tau_seconds = settings.STDP_TAU_SECONDS if stdp_tau_seconds is None else stdp_tau_seconds
        self.stdp_potentiation = settings.STDP_POTENTIATION if stdp_potentiation is None else stdp_potentiation
        self.stdp_depression = settings.STDP_DEPRESSION if stdp_depression is None else stdp_depression

    async def fire_spike(self, source_id: str) -> list[SpikeEvent]:
        """
        Fire a pattern and propagate activation along its outgoing links.

        Returns:
            Spike events in propagation order; the first is always the
            source's own discharge (potential 0, fired).

        Raises:
            PatternNotFound: If the source pattern does not exist
        """
        repo = self.repository
        now = _utcnow()

        domain = await self.executor.run(
            lambda: repo.discharge(source_id, now=now, is_source=True),
            name="fire_spike",
        )
        if domain is None:
            raise PatternNotFound(source_id)

        spikes_fired_total.inc()
        events = [SpikeEvent(pattern_id=source_id, new_potential=0.0, did_fire=True, depth=0)]
        visited = {source_id}
        queue: deque[tuple[str, int]] = deque([(source_id, 0)])

        while queue:
            node, depth = queue.popleft()
            if depth >= self.max_depth:
                continue

            links = await self.executor.run(lambda: repo.outgoing_links(node), name="fire_spike")
            for link in links:
                target = link.target_id
                if target in visited:
                    continue

                new_potential = await self.executor.run(
                    lambda: repo.add_potential(
                        target, link.effective_weight, now=now, half_life_seconds=self.half_life_seconds
                    ),
                    name="fire_spike",
                )
                if new_potential is None:
                    continue

                fired = new_potential >= self.threshold
                delta = stdp_delta(
                    fired,
                    link.target_last_spike_at,
                    now,
                    window_seconds=self.stdp_window_seconds,
                    tau_seconds=self.stdp_tau_seconds,
                    potentiation=self.stdp_potentiation,
                    depression=self.stdp_depression,
                )
                await self.executor.run(
                    lambda: repo.apply_plasticity(
                        node,
                        target,
                        delta,
                        now=now,
                        min_weight=settings.PLASTICITY_MIN,
                        max_weight=settings.PLASTICITY_MAX,
                    ),
                    name="fire_spike",
                )
                events.append(
                    SpikeEvent(pattern_id=target, new_potential=new_potential, did_fire=fired, depth=depth + 1)
                )
                if not fired:
                    continue

                visited.add(target)
                await self.executor.run(
                    lambda: repo.discharge(target, now=now, is_source=False),
                    name="fire_spike",
                )
                spikes_fired_total.inc()
                queue.append((target, depth + 1))

        logger.debug(
            f"Spike wave from {source_id} in {domain}: {len(events)} event(s), "
            f"{sum(1 for e in events if e.did_fire)} fired"
        )
        return events

    async def reset_network(self, domain: str) -> int:
        """Zero every potential in the domain; returns the number of patterns changed."""
        now = _utcnow()
        count = await self.executor.run(
            lambda: self.repository.reset_potentials(domain, now=now),
            name="reset_network",
        )
        logger.info(f"Reset spike network for {domain}: {count} pattern(s)")
        return count

    async def decay_network(self, domain: str) -> int:
        """Persist lazily-applied decay for every charged pattern in the domain."""
        now = _utcnow()
        return await self.executor.run(
            lambda: self.repository.decay_potentials(domain, now=now, half_life_seconds=self.half_life_seconds),
            name="decay_network",
        )

    async def build_links_from_trajectories(self, domain: str) -> LinkBuildResult:
        """Rebuild the domain's links from trace co-occurrence (idempotent)."""
        sequence = await self.executor.run(
            lambda: self.repository.trace_pattern_sequence(domain),
            name="build_links",
        )
        links = co_occurrence_links(sequence, self.link_window)
        upserted = await self.executor.run(
            lambda: self.repository.upsert_links(links),
            name="build_links",
        )

        components = await self.connected_components(domain)
        result = LinkBuildResult(
            domain=domain,
            traces_scanned=len(sequence),
            links_upserted=upserted,
            components=len(components),
            connected=len(components) == 1,
        )
        if not result.connected and components:
            logger.warning(
                f"Pattern graph for {domain} is not connected: {len(components)} components"
            )
        return result

    async def connected_components(self, domain: str) -> list[set[str]]:
        patterns = await self.executor.run(lambda: self.repository.list_patterns(domain), name="components")
        links = await self.executor.run(lambda: self.repository.list_links(domain), name="components")
        return components_of({p.id for p in patterns}, links)

    async def is_connected(self, domain: str) -> bool:
        return len(await self.connected_components(domain)) == 1

    async def get_network_state(self, domain: str, top_n: int = 5) -> NetworkState:
        now = _utcnow()
        patterns = await self.executor.run(lambda: self.repository.list_patterns(domain), name="network_state")
        counts = await self.executor.run(
            lambda: self.repository.spike_counts(domain, now - RECENT_SPIKES_WINDOW),
            name="network_state",
        )

        potentials = [
            (p, decayed_potential(p.spike_potential, p.potential_updated_at, now, self.half_life_seconds))
            for p in patterns
        ]
        total = len(potentials)
        top = sorted(potentials, key=lambda item: item[1], reverse=True)[: max(0, top_n)]

        return NetworkState(
            domain=domain,
            total_neurons=total,
            active_neurons=sum(1 for _, pot in potentials if pot > ACTIVE_POTENTIAL),
            avg_potential=(sum(pot for _, pot in potentials) / total) if total else 0.0,
            recent_spikes=sum(counts.values()),
            top_firing_patterns=[
                FiringPattern(pattern_id=p.id, potential=pot, last_spike_at=p.last_spike_at) for p, pot in top
            ],
        )
