"""Health, readiness, and metrics endpoints.

These endpoints are not rate limited.
- GET /health: service status + component stats
- GET /readiness: 200 only when the orchestrator is started and a worker is idle
- GET /metrics: fetch metrics and component stats
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Response

from animescrape.models.responses import ApiResponse

if TYPE_CHECKING:
    from animescrape.services.orchestrator import FetchOrchestrator


def create_health_router(*, orchestrator: FetchOrchestrator) -> APIRouter:
    """Factory that creates the health router with injected dependencies."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        """Service health check with component statistics."""
        stats = orchestrator.get_stats()
        return ApiResponse.ok(
            {
                "status": "healthy",
                "worker_pool": stats["pool"],
                "proxy_pool": stats["proxies"],
            }
        )

    @health_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """Readiness probe: started and at least one worker in the pool."""
        pool_stats = orchestrator.get_stats()["pool"]
        is_ready = orchestrator.started and pool_stats["size"] > 0

        if not is_ready:
            response.status_code = 503

        return ApiResponse(
            success=is_ready,
            data={
                "ready": is_ready,
                "workers": pool_stats["size"],
                "workers_idle": pool_stats["idle"],
            },
            error=None if is_ready else "Service not ready",
        ).model_dump()

    @health_router.get("/metrics")
    async def metrics() -> dict:
        """Operational metrics endpoint."""
        stats = orchestrator.get_stats()
        fetch_metrics = orchestrator.stats.snapshot() if orchestrator.stats else {}
        return ApiResponse.ok({**stats, "fetch": fetch_metrics})

    return health_router
