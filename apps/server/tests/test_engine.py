from __future__ import annotations

import logging
import threading
from typing import Any

import pytest
from builders import harmonic_payload, make_sample
from conftest import FakeClock, RecordingStore
from sonicsync_shared.contracts import (
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
    INBOUND_EVENTS,
)

from sonicsync.domain_models import BusEvent
from sonicsync.engine import CoherenceEngine
from sonicsync.event_bus import InProcessEventBus, NullEventBus
from sonicsync.persistence import NullHistoryStore


class _Harness:
    def __init__(self, store: Any | None = None, interval_ms: float = 3000) -> None:
        self.bus = InProcessEventBus()
        self.store = store if store is not None else RecordingStore()
        self.clock = FakeClock()
        self.engine = CoherenceEngine(
            self.bus,
            self.store,
            feedback_interval_ms=interval_ms,
            clock_ms=self.clock,
        )
        self.events: dict[str, list[BusEvent]] = {}
        for name in (EVENT_BRIDGE_READY, EVENT_COHERENCE_UPDATE, EVENT_COHERENCE_RESPONSE):
            self.bus.subscribe(name, self.events.setdefault(name, []).append)
        self.engine.start()

    def send(self, name: str, payload: dict[str, Any]) -> None:
        self.bus.publish(name, {"payload": payload})

    def updates(self) -> list[dict[str, Any]]:
        return [event.payload for event in self.events[EVENT_COHERENCE_UPDATE]]


@pytest.fixture
def harness() -> _Harness:
    h = _Harness()
    yield h
    h.engine.close(2.0)


# -- construction and lifecycle ------------------------------------------------------


def test_missing_bus_or_store_is_rejected() -> None:
    with pytest.raises(TypeError):
        CoherenceEngine(None, NullHistoryStore())
    with pytest.raises(TypeError):
        CoherenceEngine(NullEventBus(), None)


def test_start_and_stop_are_idempotent() -> None:
    bus = InProcessEventBus()
    engine = CoherenceEngine(bus, NullHistoryStore())
    engine.start()
    engine.start()
    assert all(bus.subscriber_count(name) == 1 for name in INBOUND_EVENTS)
    engine.stop()
    engine.stop()
    assert all(bus.subscriber_count(name) == 0 for name in INBOUND_EVENTS)
    assert engine.is_listening is False


def test_stopped_engine_ignores_events(harness: _Harness) -> None:
    harness.engine.stop()
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    assert harness.updates() == []
    assert len(harness.engine.history) == 0


# -- harmonic data ---------------------------------------------------------------


def test_harmonic_data_emits_enveloped_update(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    (event,) = harness.events[EVENT_COHERENCE_UPDATE]
    message = event.to_dict()
    assert message["type"] == EVENT_COHERENCE_UPDATE
    assert message["sourceId"] == "gaa-core"
    assert message["essenceLabels"] == ["coherence", "feedback", "gaa"]
    assert set(message["payload"]) == {
        "coherenceIndex",
        "gainModulation",
        "phaseShift",
        "recommendation",
    }
    assert 0.0 <= message["payload"]["coherenceIndex"] <= 1.0


def test_feedback_is_throttled(harness: _Harness) -> None:
    # one sample every 100 ms for 10 s
    for i in range(100):
        harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1", timestamp=float(i * 100)))
        harness.clock.advance(100)
    assert len(harness.updates()) == 4
    assert len(harness.engine.history.get("u1")) == 100


def test_first_sample_emits_immediately(harness: _Harness) -> None:
    harness.clock.advance(10)
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    assert len(harness.updates()) == 1


def test_zero_interval_emits_every_sample() -> None:
    h = _Harness(interval_ms=0)
    try:
        for _ in range(5):
            h.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
        assert len(h.updates()) == 5
    finally:
        h.engine.close(2.0)


def test_missing_user_id_is_dropped(harness: _Harness, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="sonicsync.engine"):
        harness.send(EVENT_HARMONIC_DATA, harmonic_payload(None))
    assert harness.updates() == []
    assert len(harness.engine.history) == 0
    assert "without userId" in caplog.text


def test_malformed_sample_is_dropped(harness: _Harness) -> None:
    payload = harmonic_payload("u1")
    payload["sonicData"]["currentFrequency"] = "loud"
    harness.send(EVENT_HARMONIC_DATA, payload)
    assert harness.updates() == []
    assert "u1" not in harness.engine.history


def test_individual_mode_leaves_collective_untouched(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    assert harness.engine.realtime_coherence("u1") is None


def test_collective_mode_emits_group_score(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1", mode="collective"))
    score = harness.engine.realtime_coherence("u1")
    assert score is not None
    (update,) = harness.updates()
    assert update["coherenceIndex"] == pytest.approx(score * 0.7 + 0.3)


def test_ingest_returns_individual_score(harness: _Harness) -> None:
    score = harness.engine.ingest("u1", make_sample(), collective=True)
    assert harness.engine.realtime_coherence("u1") == score


# -- persistence -----------------------------------------------------------------


def test_emitted_sample_is_persisted_with_session_fallback(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    assert harness.engine.writer.wait(2.0)
    (row,) = harness.store.rows
    assert row["user_id"] == "u1"
    assert row["session_id"] == "unknown"
    assert row["coherence_index"] == pytest.approx(harness.updates()[0]["coherenceIndex"])


def test_persisted_session_prefers_event_then_current(harness: _Harness) -> None:
    harness.send(EVENT_SESSION_START, {"sessionId": "live"})
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    harness.clock.advance(3000)
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1", session_id="explicit"))
    assert harness.engine.writer.wait(2.0)
    assert [row["session_id"] for row in harness.store.rows] == ["live", "explicit"]


def test_throttled_samples_are_not_persisted(harness: _Harness) -> None:
    for _ in range(3):
        harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    assert harness.engine.writer.wait(2.0)
    assert len(harness.store.rows) == 1


def test_store_failure_does_not_reach_caller() -> None:
    h = _Harness(store=RecordingStore(fail_append=True))
    try:
        h.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
        assert len(h.updates()) == 1
        assert h.engine.writer.wait(2.0)
        assert h.engine.writer.stats()["failed"] == 1
    finally:
        h.engine.close(2.0)


def test_history_query_failure_returns_empty_list() -> None:
    h = _Harness(store=RecordingStore(fail_query=True))
    try:
        assert h.engine.coherence_history("u1") == []
    finally:
        h.engine.close(2.0)


# -- bridge and session events -----------------------------------------------------------


def test_bridge_connected_announces_capabilities(harness: _Harness) -> None:
    harness.send(EVENT_BRIDGE_CONNECTED, {"bridgeId": "b1"})
    (event,) = harness.events[EVENT_BRIDGE_READY]
    assert event.payload == {
        "status": "ready",
        "capabilities": ["coherence-analysis", "feedback-modulation", "collective-sync"],
    }


def test_bridge_disconnect_clears_all_state(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1", mode="collective"))
    harness.send(EVENT_BRIDGE_DISCONNECTED, {})
    assert len(harness.engine.history) == 0
    assert harness.engine.realtime_coherence("u1") is None
    harness.send(EVENT_COHERENCE_REQUEST, {"userId": "u1"})
    assert harness.events[EVENT_COHERENCE_RESPONSE] == []


def test_coherence_request_reports_history_summary(harness: _Harness) -> None:
    for value in (0.2, 0.4):
        harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1", coherence_index=value))
    harness.send(EVENT_COHERENCE_REQUEST, {"userId": "u1"})
    (event,) = harness.events[EVENT_COHERENCE_RESPONSE]
    assert event.payload["userId"] == "u1"
    assert event.payload["coherenceIndex"] == pytest.approx(0.3)
    assert event.payload["historicalData"]["count"] == 2


def test_coherence_request_for_unknown_user_is_silent(harness: _Harness) -> None:
    harness.send(EVENT_COHERENCE_REQUEST, {"userId": "ghost"})
    harness.send(EVENT_COHERENCE_REQUEST, {})
    assert harness.events[EVENT_COHERENCE_RESPONSE] == []


def test_session_start_resets_user_history(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    harness.send(EVENT_SESSION_START, {"sessionId": "s1", "userId": "u1"})
    assert harness.engine.current_session_id == "s1"
    assert len(harness.engine.history.get("u1")) == 0


def test_session_end_keeps_history(harness: _Harness) -> None:
    harness.send(EVENT_SESSION_START, {"sessionId": "s1", "userId": "u1"})
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    harness.send(EVENT_SESSION_END, {"sessionId": "s1"})
    assert harness.engine.current_session_id is None
    assert len(harness.engine.history.get("u1")) == 1


def test_user_state_is_only_logged(harness: _Harness, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="sonicsync.engine"):
        harness.send(EVENT_USER_STATE, {"userId": "u1", "intention": "calm"})
    assert "calm" in caplog.text
    assert harness.updates() == []


# -- direct feedback and status --------------------------------------------------------


def test_send_feedback_publishes_immediately(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    feedback = harness.engine.send_feedback(0.9)
    assert feedback.gain_modulation == pytest.approx(1.25)
    assert harness.updates()[-1]["coherenceIndex"] == 0.9
    assert len(harness.updates()) == 2


def test_status_snapshot(harness: _Harness) -> None:
    harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1", mode="collective"))
    status = harness.engine.status()
    assert status["listening"] is True
    assert status["tracked_users"] == 1
    assert status["collective_users"] == 1
    assert status["last_feedback"]["coherenceIndex"] == pytest.approx(
        harness.updates()[0]["coherenceIndex"]
    )
    assert set(status["writer"]) == {"pending", "written", "failed", "evicted", "closed"}


def test_close_stops_listening_and_writer(harness: _Harness) -> None:
    assert harness.engine.close(2.0) is True
    assert harness.engine.is_listening is False
    assert harness.engine.writer.stats()["closed"] is True


@pytest.mark.parametrize("trigger", ["ingest", "send_feedback"])
def test_update_subscribers_run_outside_engine_lock(harness: _Harness, trigger: str) -> None:
    reader_finished: list[bool] = []

    def _read_from_other_thread(event: BusEvent) -> None:
        reader = threading.Thread(
            target=lambda: harness.engine.realtime_coherence("u1"), daemon=True
        )
        reader.start()
        reader.join(timeout=1.0)
        reader_finished.append(not reader.is_alive())

    harness.bus.subscribe(EVENT_COHERENCE_UPDATE, _read_from_other_thread)
    if trigger == "ingest":
        harness.send(EVENT_HARMONIC_DATA, harmonic_payload("u1"))
    else:
        harness.engine.send_feedback(0.6)
    assert reader_finished == [True]
