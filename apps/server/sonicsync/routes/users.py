"""Per-user coherence lookups: live in-memory state and persisted history."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from ..api_models import UserCoherenceResponse, UserHistoryResponse
from ..json_utils import sanitize_value

if TYPE_CHECKING:
    from ..app import RuntimeState


def create_user_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.get("/api/users/{user_id}/coherence", response_model=UserCoherenceResponse)
    async def user_coherence(user_id: str) -> UserCoherenceResponse:
        realtime = state.engine.realtime_coherence(user_id)
        summary = state.engine.history_summary(user_id)
        if realtime is None and summary is None:
            raise HTTPException(status_code=404, detail="Unknown user")
        return {
            "userId": user_id,
            "realtimeCoherence": realtime,
            "historicalData": summary,
        }

    @router.get("/api/users/{user_id}/history", response_model=UserHistoryResponse)
    async def user_history(user_id: str) -> UserHistoryResponse:
        records = await asyncio.to_thread(state.engine.coherence_history, user_id)
        return {
            "userId": user_id,
            "records": [sanitize_value(record.to_dict()) for record in records],
        }

    return router
