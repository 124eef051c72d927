"""Named-event publish/subscribe contract plus two in-process implementations.

The engine only relies on :class:`EventBus`; any transport that offers
``publish`` and ``subscribe`` (returning an unsubscribe handle) can be
injected in place of :class:`InProcessEventBus`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from threading import RLock
from typing import Any, Protocol

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class EventBus(Protocol):
    def publish(self, name: str, detail: Any) -> None: ...

    def subscribe(self, name: str, handler: EventHandler) -> Unsubscribe: ...


class InProcessEventBus:
    """Synchronous fan-out dispatcher.

    Handlers registered at publish time are invoked in registration order on
    the publisher's thread.  A handler that raises is logged and skipped so
    the remaining handlers still receive the event.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = RLock()

    def subscribe(self, name: str, handler: EventHandler) -> Unsubscribe:
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name)
                if not handlers:
                    return
                try:
                    handlers.remove(handler)
                except ValueError:
                    return
                if not handlers:
                    self._handlers.pop(name, None)

        return _unsubscribe

    def publish(self, name: str, detail: Any) -> None:
        with self._lock:
            handlers = list(self._handlers.get(name, ()))
        for handler in handlers:
            try:
                handler(detail)
            except Exception:
                LOGGER.warning("Event handler for %r failed; continuing.", name, exc_info=True)

    def subscriber_count(self, name: str) -> int:
        with self._lock:
            return len(self._handlers.get(name, ()))


class NullEventBus:
    """Bus that drops every event; for callers that have no transport."""

    def publish(self, name: str, detail: Any) -> None:
        LOGGER.debug("NullEventBus dropped %r", name)

    def subscribe(self, name: str, handler: EventHandler) -> Unsubscribe:
        return lambda: None
