"""
Metrics API Route
Exposes Prometheus metrics for scraping
"""

from fastapi import APIRouter, Response

from reasonbank.core.metrics import render_metrics

router = APIRouter(tags=["metrics"])


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics in exposition format."""
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)
