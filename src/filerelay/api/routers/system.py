"""Liveness and metrics endpoints (root level, no auth)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from filerelay import __version__
from filerelay.api.deps import Service
from filerelay.api.schemas.common import HealthResponse, MetricsResponse

router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
async def health(service: Service) -> HealthResponse:
    return HealthResponse(version=__version__, active_items=len(service.registry))


@router.get("/metrics", response_model=MetricsResponse)
async def metrics(service: Service) -> dict[str, Any]:
    """MetricsTracker snapshot, circuit monitors and queue state."""
    return service.status()
