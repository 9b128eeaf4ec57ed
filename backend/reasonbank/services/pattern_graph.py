"""Similarity graph analysis over a domain's patterns.

Patterns are nodes of an undirected graph; two patterns are joined when the
cosine similarity of their embeddings reaches a threshold, weighted by that
similarity. On top of it:

- compute_mincut() splits the domain in two along its global minimum cut
  (Stoer-Wagner). A disconnected graph has a cut of 0 and splits off its
  largest component.
- partition_patterns() keeps splitting clusters whose min-cut is weak and
  persists the resulting cluster ids and coherence scores.
- detect_novel_pattern() compares a pattern with every cluster and flags it
  when no cluster member is similar enough.
- compute_pattern_pagerank() ranks patterns by PageRank over the directed
  co-occurrence links, weighted by their plastic effective weight.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Optional, Sequence

import networkx as nx
import numpy as np

from reasonbank.core.config import settings
from reasonbank.core.errors import PatternNotFound
from reasonbank.core.metrics import partitions_computed_total
from reasonbank.core.retry import ResilientQueryExecutor
from reasonbank.repositories.base import PatternRepository
from reasonbank.schemas.learning import (
    GraphNode,
    MincutResult,
    NoveltyScore,
    PatternCluster,
    PatternImportance,
)

logger = logging.getLogger(__name__)


def similarity_graph(nodes: Sequence[GraphNode], threshold: float) -> nx.Graph:
    """Undirected graph of patterns whose embedding similarity is >= threshold."""
    graph = nx.Graph()
    graph.add_nodes_from(n.pattern_id for n in nodes)
    if len(nodes) < 2:
        return graph

    matrix = np.asarray([n.embedding for n in nodes], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    unit = matrix / norms
    sims = unit @ unit.T

    ids = [n.pattern_id for n in nodes]
    for i in range(len(ids)):
        for j in range(i + 1, len(ids)):
            sim = float(sims[i, j])
            if sim >= threshold and sim > 0.0:
                graph.add_edge(ids[i], ids[j], weight=sim)
    return graph


def _ordered(a: set[str], b: set[str]) -> tuple[list[str], list[str]]:
    first, second = sorted(a), sorted(b)
    if (-len(first), first[:1]) > (-len(second), second[:1]):
        first, second = second, first
    return first, second


def minimum_cut(graph: nx.Graph) -> tuple[float, list[str], list[str]]:
    """Global minimum cut as (value, larger side, smaller side)."""
    nodes = list(graph.nodes)
    if not nodes:
        return 0.0, [], []
    if len(nodes) == 1:
        return 0.0, nodes, []

    components = sorted(nx.connected_components(graph), key=lambda c: (-len(c), min(c)))
    if len(components) > 1:
        head = components[0]
        rest = set().union(*components[1:])
        a, b = _ordered(head, rest)
        return 0.0, a, b

    cut_value, (side_a, side_b) = nx.stoer_wagner(graph, weight="weight")
    a, b = _ordered(set(side_a), set(side_b))
    return float(cut_value), a, b


class PatternGraph:
    def __init__(
        self,
        repository: PatternRepository,
        *,
        executor: Optional[ResilientQueryExecutor] = None,
        similarity_threshold: Optional[float] = None,
    ):
        self.repository = repository
        self.executor = executor or ResilientQueryExecutor()
        self.similarity_threshold = (
            settings.GRAPH_SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )

    async def build_pattern_edges(self, domain: str, similarity_threshold: Optional[float] = None) -> nx.Graph:
        threshold = self.similarity_threshold if similarity_threshold is None else similarity_threshold
        nodes = await self.executor.run(lambda: self.repository.graph_nodes(domain), name="pattern_graph")
        return similarity_graph(nodes, threshold)

    async def compute_mincut(self, domain: str, similarity_threshold: Optional[float] = None) -> MincutResult:
        graph = await self.build_pattern_edges(domain, similarity_threshold)
        cut_value, a, b = minimum_cut(graph)
        return MincutResult(domain=domain, cut_value=cut_value, partition_a=a, partition_b=b)

    async def partition_patterns(
        self,
        domain: str,
        similarity_threshold: Optional[float] = None,
        max_clusters: Optional[int] = None,
        min_cut_threshold: Optional[float] = None,
    ) -> list[PatternCluster]:
        """
        Recursively split the domain along weak minimum cuts.

        A cluster is split while its min-cut is below min_cut_threshold and
        the cluster count stays within max_clusters. Each final cluster's
        coherence score is its own min-cut value (0 for a singleton).
        Assignments are persisted; patterns not in any cluster are cleared.
        """
        max_clusters = settings.GRAPH_MAX_CLUSTERS if max_clusters is None else max_clusters
        min_cut_threshold = settings.GRAPH_MIN_CUT_THRESHOLD if min_cut_threshold is None else min_cut_threshold

        graph = await self.build_pattern_edges(domain, similarity_threshold)
        if graph.number_of_nodes() == 0:
            return []

        final: list[tuple[list[str], float]] = []
        pending: deque[list[str]] = deque([sorted(graph.nodes)])
        while pending:
            members = pending.popleft()
            cut_value, a, b = minimum_cut(graph.subgraph(members))
            can_split = len(final) + len(pending) + 2 <= max_clusters
            if b and cut_value < min_cut_threshold and can_split:
                pending.append(a)
                pending.append(b)
            else:
                final.append((members, cut_value))

        final.sort(key=lambda item: (-len(item[0]), item[0][0]))
        clusters = [
            PatternCluster(cluster_id=idx, pattern_ids=members, coherence_score=coherence)
            for idx, (members, coherence) in enumerate(final)
        ]

        assigned = await self.executor.run(
            lambda: self.repository.assign_partitions(domain, clusters),
            name="partition_patterns",
        )
        partitions_computed_total.inc()
        logger.info(f"Partitioned {domain}: {assigned} pattern(s) into {len(clusters)} cluster(s)")
        return clusters

    async def detect_novel_pattern(
        self,
        pattern_id: str,
        domain: str,
        novelty_threshold: Optional[float] = None,
    ) -> NoveltyScore:
        """
        Score how far a pattern sits from the domain's existing clusters.

        Uses the partitions stored by partition_patterns(). With no clusters
        every pattern is novel.

        Raises:
            PatternNotFound: If the pattern does not exist
        """
        threshold = settings.NOVELTY_THRESHOLD if novelty_threshold is None else novelty_threshold
        pattern = await self.executor.run(lambda: self.repository.get_pattern(pattern_id), name="novelty")
        if pattern is None or pattern.embedding is None:
            raise PatternNotFound(pattern_id)
        nodes = await self.executor.run(lambda: self.repository.graph_nodes(domain), name="novelty")

        target = np.asarray(pattern.embedding, dtype=np.float64)
        target_norm = float(np.linalg.norm(target))
        best: dict[int, float] = {}
        for node in nodes:
            if node.pattern_id == pattern_id or node.mincut_partition is None:
                continue
            vec = np.asarray(node.embedding, dtype=np.float64)
            denom = target_norm * float(np.linalg.norm(vec))
            sim = float(np.dot(target, vec) / denom) if denom else 0.0
            best[node.mincut_partition] = max(sim, best.get(node.mincut_partition, sim))

        if not best:
            return NoveltyScore(pattern_id=pattern_id, max_similarity_to_cluster=0.0, is_novel=True)

        nearest = max(sorted(best), key=lambda cid: best[cid])
        max_sim = best[nearest]
        return NoveltyScore(
            pattern_id=pattern_id,
            max_similarity_to_cluster=max_sim,
            is_novel=max_sim < threshold,
            nearest_cluster_id=nearest,
        )

    async def compute_pattern_pagerank(
        self,
        domain: str,
        damping: Optional[float] = None,
    ) -> list[PatternImportance]:
        damping = settings.PAGERANK_DAMPING if damping is None else damping
        patterns = await self.executor.run(lambda: self.repository.list_patterns(domain), name="pagerank")
        if not patterns:
            return []
        links = await self.executor.run(lambda: self.repository.list_links(domain), name="pagerank")

        graph = nx.DiGraph()
        graph.add_nodes_from(p.id for p in patterns)
        for link in links:
            if link.source_id in graph and link.target_id in graph:
                graph.add_edge(link.source_id, link.target_id, weight=link.effective_weight)

        scores = nx.pagerank(graph, alpha=damping, weight="weight")
        ranked = [PatternImportance(pattern_id=pid, importance=float(score)) for pid, score in scores.items()]
        ranked.sort(key=lambda r: (-r.importance, r.pattern_id))
        return ranked
