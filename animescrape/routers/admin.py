"""Admin endpoints for the fetch core.

- POST  /api/v1/admin/pool/scale: resize the worker pool
- POST  /api/v1/admin/proxies/rotate: refresh proxies and rebuild workers
- GET   /api/v1/admin/breakers: every tracked breaker's state
- GET   /api/v1/admin/breakers/{target}: one breaker's state
- PATCH /api/v1/admin/config: partial runtime config update
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Body
from pydantic import BaseModel, Field

from animescrape.models.responses import ApiResponse

if TYPE_CHECKING:
    from animescrape.services.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


class ScaleRequest(BaseModel):
    size: int = Field(..., ge=0)


def create_admin_router(*, orchestrator: FetchOrchestrator) -> APIRouter:
    """Factory that creates the admin router with injected dependencies."""

    admin_router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

    @admin_router.post("/pool/scale")
    async def scale_pool(body: ScaleRequest) -> dict:
        """Resize the pool; the size is clamped to the configured bounds."""
        size = await orchestrator.scale_pool(body.size)
        return ApiResponse.ok({"requested": body.size, "size": size})

    @admin_router.post("/proxies/rotate")
    async def rotate_proxies() -> dict:
        await orchestrator.rotate_proxies()
        stats = orchestrator.get_stats()
        return ApiResponse.ok({"proxies": stats["proxies"], "pool": stats["pool"]})

    @admin_router.get("/breakers")
    async def breaker_states() -> dict:
        states = orchestrator.breaker_states()
        return ApiResponse.ok({target: state.value for target, state in states.items()})

    @admin_router.get("/breakers/{target}")
    async def breaker_state(target: str) -> dict:
        return ApiResponse.ok(
            {
                "target": target,
                "state": orchestrator.breaker_state(target).value,
                "retry_after": round(orchestrator.breaker_retry_after(target), 3),
            }
        )

    @admin_router.patch("/config")
    async def update_config(partial: dict[str, Any] = Body(...)) -> dict:
        """Apply a partial update; unknown keys or bad values return 422."""
        config = await orchestrator.update_config(partial)
        logger.info("Runtime config updated via admin API: %s", sorted(partial))
        return ApiResponse.ok(config.model_dump(mode="json"))

    return admin_router
