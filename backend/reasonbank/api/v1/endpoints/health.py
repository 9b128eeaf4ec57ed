"""Health and store status endpoints."""

from fastapi import APIRouter, Depends

from reasonbank.api.v1.endpoints.learning import get_reasoning_bank
from reasonbank.services.reasoning_bank import ReasoningBank

router = APIRouter()


@router.get("")
async def health_check():
    """Basic health check."""
    return {"status": "ok"}


@router.get("/store")
async def store_status(bank: ReasoningBank = Depends(get_reasoning_bank)):
    """Backing-store reachability (never raises)."""
    backend = bank.store.repository.backend
    try:
        healthy = await bank.store.health_check()
    except Exception as exc:
        return {"status": "degraded", "backend": backend, "error": str(exc)}
    return {"status": "ok" if healthy else "degraded", "backend": backend}
