"""Health check endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from ..api_models import HealthResponse

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_health_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        status = state.engine.status()
        writer = status["writer"]
        return {
            "status": "ok" if status["listening"] else "idle",
            "listening": status["listening"],
            "session_id": status["session_id"],
            "tracked_users": status["tracked_users"],
            "collective_users": status["collective_users"],
            "pending_writes": writer["pending"],
            "failed_writes": writer["failed"],
        }

    return router
