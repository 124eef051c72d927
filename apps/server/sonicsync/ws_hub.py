from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from fastapi import WebSocket

from .domain_models import BusEvent, payload_of
from .event_bus import EventBus, Unsubscribe
from .json_utils import sanitize_for_json

LOGGER = logging.getLogger(__name__)


_SEND_TIMEOUT_S: float = 0.5
"""Per-connection send timeout; connections exceeding this are dropped."""

_SEND_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged send-error warnings to avoid log spam."""


@dataclass(slots=True)
class WSConnection:
    websocket: WebSocket
    user_id: str | None = None


def _event_message(name: str, detail: Any) -> dict[str, Any]:
    if isinstance(detail, BusEvent):
        return detail.to_dict()
    return {"type": name, "payload": payload_of(detail)}


class WebSocketHub:
    """Forwards bus events to every connected WebSocket client."""

    def __init__(self) -> None:
        self._connections: dict[int, WSConnection] = {}
        self._lock = asyncio.Lock()
        self._send_timeout_s = _SEND_TIMEOUT_S
        self._last_send_error_log_ts = 0.0
        self._send_error_log_interval_s = _SEND_ERROR_LOG_INTERVAL_S
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribers: list[Unsubscribe] = []
        self._pending: set[Any] = set()

    async def add(self, websocket: WebSocket, user_id: str | None) -> None:
        async with self._lock:
            self._connections[id(websocket)] = WSConnection(websocket=websocket, user_id=user_id)

    async def remove(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.pop(id(websocket), None)

    async def update_user(self, websocket: WebSocket, user_id: str | None) -> None:
        async with self._lock:
            conn = self._connections.get(id(websocket))
            if conn is not None:
                conn.user_id = user_id

    async def _snapshot(self) -> list[WSConnection]:
        async with self._lock:
            return list(self._connections.values())

    async def broadcast(self, message: dict[str, Any]) -> None:
        target_user = (message.get("payload") or {}).get("userId")
        conns = [
            conn
            for conn in await self._snapshot()
            if conn.user_id is None or target_user is None or conn.user_id == target_user
        ]
        if not conns:
            return
        cleaned, had_non_finite = sanitize_for_json(message)
        if had_non_finite:
            LOGGER.warning(
                "WebSocket message %r contained NaN/Inf values; replaced with null.",
                message.get("type"),
            )
        text = json.dumps(cleaned, separators=(",", ":"), allow_nan=False)

        async def _send(conn: WSConnection) -> WebSocket | None:
            try:
                await asyncio.wait_for(
                    conn.websocket.send_text(text),
                    timeout=self._send_timeout_s,
                )
                return None
            except Exception:
                now = asyncio.get_running_loop().time()
                if (now - self._last_send_error_log_ts) >= self._send_error_log_interval_s:
                    self._last_send_error_log_ts = now
                    LOGGER.warning(
                        "WebSocket broadcast send failed; connection will be removed.",
                        exc_info=True,
                    )
                return conn.websocket

        dead_ws = await asyncio.gather(*(_send(conn) for conn in conns))
        for ws in dead_ws:
            if ws is not None:
                await self.remove(ws)

    # -- bus bridge -----------------------------------------------------------

    def attach(
        self,
        bus: EventBus,
        event_names: Iterable[str],
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        """Subscribe to *event_names*; each event is broadcast on *loop*."""
        self._loop = loop
        for name in event_names:
            self._unsubscribers.append(bus.subscribe(name, self._handler_for(name)))

    def detach(self) -> None:
        unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        self._loop = None

    def _handler_for(self, name: str):
        def _handle(detail: Any) -> None:
            self._schedule(_event_message(name, detail))

        return _handle

    def _schedule(self, message: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            future: Any = loop.create_task(self.broadcast(message))
        else:
            future = asyncio.run_coroutine_threadsafe(self.broadcast(message), loop)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
