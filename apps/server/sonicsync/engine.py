"""CoherenceEngine: thin orchestrator composing history, scoring and feedback.

Routes inbound bus events through the sliding history store, the scorer and
the collective aggregator, throttles ``coherence-update`` emissions and hands
persistence to a background :class:`~sonicsync.persistence.HistoryWriter`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from threading import RLock
from time import monotonic
from typing import Any

from sonicsync_core import CoherenceFeedback, clamp01, generate_feedback
from sonicsync_shared.contracts import (
    ENGINE_CAPABILITIES,
    EVENT_BRIDGE_CONNECTED,
    EVENT_BRIDGE_DISCONNECTED,
    EVENT_BRIDGE_READY,
    EVENT_COHERENCE_REQUEST,
    EVENT_COHERENCE_RESPONSE,
    EVENT_COHERENCE_UPDATE,
    EVENT_HARMONIC_DATA,
    EVENT_SESSION_END,
    EVENT_SESSION_START,
    EVENT_USER_STATE,
    MODE_COLLECTIVE,
)

from .collective import CollectiveAggregator
from .constants import (
    FEEDBACK_INTERVAL_MS,
    HISTORY_QUERY_LIMIT,
    HISTORY_WINDOW_SIZE,
    UNKNOWN_SESSION_ID,
)
from .domain_models import BusEvent, CoherenceRecord, HarmonicSample, payload_of
from .event_bus import EventBus, Unsubscribe
from .history import SlidingHistoryStore
from .persistence import HistoryStore, HistoryWriter
from .scoring import CoherenceScorer

LOGGER = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return monotonic() * 1000.0


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class CoherenceEngine:
    def __init__(
        self,
        bus: EventBus,
        history_store: HistoryStore,
        *,
        feedback_interval_ms: float = FEEDBACK_INTERVAL_MS,
        history_window_size: int = HISTORY_WINDOW_SIZE,
        write_queue_maxsize: int | None = None,
        query_limit: int = HISTORY_QUERY_LIMIT,
        clock_ms: Callable[[], float] = _monotonic_ms,
    ) -> None:
        if bus is None:
            raise TypeError("CoherenceEngine requires an event bus; use NullEventBus for none")
        if history_store is None:
            raise TypeError(
                "CoherenceEngine requires a history store; use NullHistoryStore for none"
            )
        self._bus = bus
        self._lock = RLock()
        self._history = SlidingHistoryStore(history_window_size)
        self._scorer = CoherenceScorer(self._history)
        self._collective = CollectiveAggregator()
        self._writer = (
            HistoryWriter(history_store)
            if write_queue_maxsize is None
            else HistoryWriter(history_store, maxsize=write_queue_maxsize)
        )
        self._feedback_interval_ms = max(0.0, float(feedback_interval_ms))
        self._query_limit = max(1, int(query_limit))
        self._clock_ms = clock_ms
        self._unsubscribers: list[Unsubscribe] = []
        self._listening = False
        self._current_session_id: str | None = None
        self._last_feedback_ms: float | None = None
        self._last_feedback: CoherenceFeedback | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def current_session_id(self) -> str | None:
        return self._current_session_id

    @property
    def history(self) -> SlidingHistoryStore:
        return self._history

    @property
    def writer(self) -> HistoryWriter:
        return self._writer

    def start(self) -> None:
        with self._lock:
            if self._listening:
                return
            self._listening = True
            handlers: dict[str, Callable[[Any], None]] = {
                EVENT_HARMONIC_DATA: self._on_harmonic_data,
                EVENT_BRIDGE_CONNECTED: self._on_bridge_connected,
                EVENT_BRIDGE_DISCONNECTED: self._on_bridge_disconnected,
                EVENT_USER_STATE: self._on_user_state,
                EVENT_COHERENCE_REQUEST: self._on_coherence_request,
                EVENT_SESSION_START: self._on_session_start,
                EVENT_SESSION_END: self._on_session_end,
            }
            for name, handler in handlers.items():
                self._unsubscribers.append(self._bus.subscribe(name, handler))
        LOGGER.info("Coherence engine listening to %d bridge events", len(handlers))

    def stop(self) -> None:
        with self._lock:
            if not self._listening:
                return
            self._listening = False
            unsubscribers, self._unsubscribers = self._unsubscribers, []
        for unsubscribe in unsubscribers:
            unsubscribe()
        LOGGER.info("Coherence engine stopped listening")

    def close(self, flush_timeout_s: float | None = None) -> bool:
        """Stop listening and stop accepting writes; optionally flush pending ones."""
        self.stop()
        return self._writer.close(flush_timeout_s)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self._bus.publish(event_type, BusEvent(type=event_type, payload=payload))

    def send_feedback(self, coherence_index: float) -> CoherenceFeedback:
        """Generate and publish feedback for *coherence_index* right away."""
        feedback = self._remember_feedback(coherence_index)
        self._emit(EVENT_COHERENCE_UPDATE, feedback.to_payload())
        return feedback

    def _remember_feedback(self, coherence_index: float) -> CoherenceFeedback:
        feedback = generate_feedback(coherence_index)
        with self._lock:
            self._last_feedback = feedback
        return feedback

    # ------------------------------------------------------------------
    # Inbound handlers
    # ------------------------------------------------------------------

    def _on_harmonic_data(self, detail: Any) -> None:
        payload = payload_of(detail)
        user_id = _optional_str(payload.get("userId"))
        if user_id is None:
            LOGGER.warning("Received harmonic data without userId; dropping sample")
            return
        try:
            sample = HarmonicSample.from_payload(payload.get("sonicData") or {})
        except ValueError as exc:
            LOGGER.warning("Dropping malformed harmonic data for user %s: %s", user_id, exc)
            return
        self.ingest(
            user_id,
            sample,
            session_id=_optional_str(payload.get("sessionId")),
            collective=payload.get("mode") == MODE_COLLECTIVE,
        )

    def ingest(
        self,
        user_id: str,
        sample: HarmonicSample,
        *,
        session_id: str | None = None,
        collective: bool = False,
    ) -> float:
        """Score one sample and emit throttled feedback; returns the user's score."""
        with self._lock:
            coherence = self._scorer.score(sample, user_id)
            if collective:
                self._collective.update(user_id, coherence)
            now_ms = self._clock_ms()
            due = (
                self._last_feedback_ms is None
                or now_ms - self._last_feedback_ms >= self._feedback_interval_ms
            )
            if not due:
                return coherence
            self._last_feedback_ms = now_ms
            final = self._collective.group_score() if collective else coherence
            persist_session = session_id or self._current_session_id or UNKNOWN_SESSION_ID
            feedback = self._remember_feedback(final)
        # Publish outside the lock; subscribers run synchronously.
        self._emit(EVENT_COHERENCE_UPDATE, feedback.to_payload())
        self._writer.submit(user_id, persist_session, sample, clamp01(final))
        return coherence

    def _on_bridge_connected(self, detail: Any) -> None:
        LOGGER.info("Audio bridge connected: %s", payload_of(detail))
        self._emit(
            EVENT_BRIDGE_READY,
            {"status": "ready", "capabilities": list(ENGINE_CAPABILITIES)},
        )

    def _on_bridge_disconnected(self, detail: Any) -> None:
        LOGGER.info("Audio bridge disconnected: %s", payload_of(detail))
        with self._lock:
            self._history.clear_all()
            self._collective.clear()

    def _on_user_state(self, detail: Any) -> None:
        payload = payload_of(detail)
        LOGGER.info(
            "User state received user=%s intention=%s emotional_state=%s",
            payload.get("userId"),
            payload.get("intention"),
            payload.get("emotionalState"),
        )

    def _on_coherence_request(self, detail: Any) -> None:
        user_id = _optional_str(payload_of(detail).get("userId"))
        if user_id is None:
            LOGGER.warning("Coherence request without userId; ignoring")
            return
        with self._lock:
            summary = self._history.summary(user_id)
        if summary is None:
            LOGGER.debug("No coherence history for user %s; no response", user_id)
            return
        self._emit(
            EVENT_COHERENCE_RESPONSE,
            {
                "userId": user_id,
                "coherenceIndex": summary["avg"],
                "historicalData": summary,
            },
        )

    def _on_session_start(self, detail: Any) -> None:
        payload = payload_of(detail)
        session_id = _optional_str(payload.get("sessionId"))
        user_id = _optional_str(payload.get("userId"))
        with self._lock:
            self._current_session_id = session_id
            if user_id is not None:
                self._history.reset(user_id)
        LOGGER.info("Session started session=%s user=%s", session_id, user_id)

    def _on_session_end(self, detail: Any) -> None:
        session_id = _optional_str(payload_of(detail).get("sessionId"))
        # Per-user history survives until the bridge disconnects.
        with self._lock:
            self._current_session_id = None
        LOGGER.info("Session ended session=%s", session_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def coherence_history(self, user_id: str) -> list[CoherenceRecord]:
        """Persisted samples for *user_id*, most recent first; [] on failure."""
        try:
            return list(self._writer.store.query(user_id, self._query_limit))
        except Exception:
            LOGGER.warning("Failed to fetch coherence history for %s", user_id, exc_info=True)
            return []

    def realtime_coherence(self, user_id: str) -> float | None:
        with self._lock:
            return self._collective.get(user_id)

    def history_summary(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            return self._history.summary(user_id)

    def status(self) -> dict[str, Any]:
        with self._lock:
            last = self._last_feedback
            return {
                "listening": self._listening,
                "session_id": self._current_session_id,
                "tracked_users": len(self._history),
                "collective_users": len(self._collective),
                "smoothed_coherence": self._scorer.smoothed,
                "last_feedback": last.to_payload() if last is not None else None,
                "writer": self._writer.stats(),
            }
