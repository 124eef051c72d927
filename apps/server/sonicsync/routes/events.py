"""Ingestion endpoints: publish bridge events onto the bus, trigger feedback."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException
from sonicsync_shared.contracts import (
    EVENT_HARMONIC_DATA,
    INBOUND_EVENTS,
    validate_harmonic_payload,
)

from ..api_models import (
    EventRequest,
    FeedbackRequest,
    FeedbackResponse,
    HarmonicDataRequest,
    PublishResponse,
)

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)


def create_event_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.post("/api/events/{event_name}", response_model=PublishResponse)
    async def publish_event(event_name: str, req: EventRequest) -> PublishResponse:
        if event_name not in INBOUND_EVENTS:
            raise HTTPException(status_code=404, detail=f"Unknown event {event_name!r}")
        if event_name == EVENT_HARMONIC_DATA:
            ok, reason = validate_harmonic_payload(req.payload)
            if not ok:
                raise HTTPException(status_code=422, detail=reason)
        LOGGER.debug("Publishing %s received over HTTP", event_name)
        state.bus.publish(event_name, {"payload": req.payload})
        return {"status": "published", "event": event_name}

    @router.post("/api/harmonic", response_model=PublishResponse)
    async def publish_harmonic(req: HarmonicDataRequest) -> PublishResponse:
        LOGGER.debug("Publishing harmonic data for user %s over HTTP", req.userId)
        state.bus.publish(EVENT_HARMONIC_DATA, {"payload": req.model_dump()})
        return {"status": "published", "event": EVENT_HARMONIC_DATA}

    @router.post("/api/feedback", response_model=FeedbackResponse)
    async def send_feedback(req: FeedbackRequest) -> FeedbackResponse:
        feedback = state.engine.send_feedback(req.coherence_index)
        return feedback.to_payload()

    return router
