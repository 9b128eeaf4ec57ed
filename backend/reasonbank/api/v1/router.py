"""
API v1 Router
=============

Main router that combines all API v1 endpoints.
"""

from fastapi import APIRouter

from reasonbank.api.v1.endpoints import health, learning

api_router = APIRouter()

api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(learning.router, prefix="/learning", tags=["Learning"])
