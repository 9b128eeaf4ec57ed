"""
Learning API Endpoints
Trace/feedback intake, pattern retrieval, and spiking-network operations.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from reasonbank.schemas.learning import (
    AnomalyRecord,
    AttentionWeight,
    Feedback,
    FeedbackResult,
    LinkBuildResult,
    MincutResult,
    NetworkState,
    NoveltyScore,
    PatternCluster,
    PatternImportance,
    PatternMatch,
    PatternRecord,
    SpikeEvent,
    Stats,
    Trace,
    TraceRecordResult,
)
from reasonbank.services.reasoning_bank import ReasoningBank

router = APIRouter()


class AttentionRequest(BaseModel):
    """Query for spike-weighted attention."""
    query: str = Field(..., min_length=1)
    k: int = Field(default=5, ge=1, le=100)


class NetworkResetResponse(BaseModel):
    domain: str
    reset: int


class PartitionRequest(BaseModel):
    """Min-cut clustering parameters; omitted values use the configured defaults."""
    similarity_threshold: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    max_clusters: Optional[int] = Field(default=None, ge=1, le=1000)
    min_cut_threshold: Optional[float] = Field(default=None, ge=0.0)


def get_reasoning_bank(request: Request) -> ReasoningBank:
    bank = getattr(request.app.state, "reasoning_bank", None)
    if bank is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Learning core not initialized",
        )
    return bank


@router.post("/traces", response_model=TraceRecordResult, status_code=status.HTTP_201_CREATED)
async def record_trace(trace: Trace, bank: ReasoningBank = Depends(get_reasoning_bank)):
    """
    Record a completed reasoning episode.

    Successful traces with act-step tool calls from a known agent create or
    reinforce a pattern. A trace id that was already recorded is reported as
    a duplicate and changes nothing.
    """
    return await bank.store.record_trace(trace)


@router.post("/feedback", response_model=FeedbackResult)
async def record_feedback(feedback: Feedback, bank: ReasoningBank = Depends(get_reasoning_bank)):
    """Blend an external quality score into the request's pattern(s)."""
    return await bank.store.record_feedback(feedback)


@router.get("/patterns/search", response_model=list[PatternMatch])
async def search_patterns(
    task_type: Optional[str] = Query(None, description="Task type; derives query text and domain"),
    q: Optional[str] = Query(None, description="Free-text query (requires domain)"),
    domain: Optional[str] = Query(None, description="Domain to search"),
    limit: int = Query(10, ge=1, le=100),
    min_similarity: Optional[float] = Query(None, ge=-1.0, le=1.0),
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    """Domain-scoped similarity search over learned patterns."""
    if task_type and not q:
        return await bank.store.search_for_task(task_type, limit)

    if not q or not domain:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide task_type, or both q and domain",
        )
    return await bank.store.search_patterns(q, domain, limit, min_similarity)


@router.get("/patterns/{pattern_id}", response_model=PatternRecord)
async def get_pattern(pattern_id: str, bank: ReasoningBank = Depends(get_reasoning_bank)):
    pattern = await bank.store.get_pattern(pattern_id)
    if pattern is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pattern not found")
    return pattern


@router.get("/stats", response_model=Stats)
async def get_stats(bank: ReasoningBank = Depends(get_reasoning_bank)):
    """Pattern/trace totals; falls back to local counters if the store is down."""
    result = await bank.get_stats()
    return result.value


@router.post("/spikes/{pattern_id}", response_model=list[SpikeEvent])
async def fire_spike(pattern_id: str, bank: ReasoningBank = Depends(get_reasoning_bank)):
    return await bank.network.fire_spike(pattern_id)


@router.post("/network/{domain}/reset", response_model=NetworkResetResponse)
async def reset_network(domain: str, bank: ReasoningBank = Depends(get_reasoning_bank)):
    count = await bank.network.reset_network(domain)
    return NetworkResetResponse(domain=domain, reset=count)


@router.post("/network/{domain}/links", response_model=LinkBuildResult)
async def build_links(domain: str, bank: ReasoningBank = Depends(get_reasoning_bank)):
    """Rebuild the domain's pattern links from recorded traces."""
    return await bank.network.build_links_from_trajectories(domain)


@router.get("/network/{domain}", response_model=NetworkState)
async def network_state(
    domain: str,
    top_n: int = Query(5, ge=0, le=100),
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    return await bank.network.get_network_state(domain, top_n)


@router.get("/anomalies/{domain}", response_model=list[AnomalyRecord])
async def detect_anomalies(
    domain: str,
    window_seconds: Optional[int] = Query(None, ge=1),
    z_threshold: Optional[float] = Query(None, ge=0.0),
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    return await bank.anomalies.detect_anomalies(domain, window_seconds, z_threshold)


@router.post("/attention/{domain}", response_model=list[AttentionWeight])
async def spike_attention(
    domain: str,
    body: AttentionRequest,
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    """Softmax attention over the top-k patterns for a free-text query."""
    query_embedding = await bank.store.embed(body.query)
    return await bank.attention.compute_spike_attention(query_embedding, domain, body.k)


@router.get("/patterns/{pattern_id}/novelty", response_model=NoveltyScore)
async def pattern_novelty(
    pattern_id: str,
    domain: str = Query(..., min_length=1),
    threshold: Optional[float] = Query(None, ge=-1.0, le=1.0),
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    """Similarity of a pattern to the domain's stored clusters."""
    return await bank.graph.detect_novel_pattern(pattern_id, domain, threshold)


@router.get("/network/{domain}/mincut", response_model=MincutResult)
async def network_mincut(
    domain: str,
    similarity_threshold: Optional[float] = Query(None, ge=-1.0, le=1.0),
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    return await bank.graph.compute_mincut(domain, similarity_threshold)


@router.post("/network/{domain}/partition", response_model=list[PatternCluster])
async def partition_network(
    domain: str,
    body: Optional[PartitionRequest] = None,
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    """Cluster the domain's patterns along weak minimum cuts and store the assignment."""
    body = body or PartitionRequest()
    return await bank.graph.partition_patterns(
        domain,
        similarity_threshold=body.similarity_threshold,
        max_clusters=body.max_clusters,
        min_cut_threshold=body.min_cut_threshold,
    )


@router.get("/network/{domain}/pagerank", response_model=list[PatternImportance])
async def network_pagerank(
    domain: str,
    damping: Optional[float] = Query(None, gt=0.0, lt=1.0),
    bank: ReasoningBank = Depends(get_reasoning_bank),
):
    return await bank.graph.compute_pattern_pagerank(domain, damping)
