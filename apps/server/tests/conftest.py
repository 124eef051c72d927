"""Shared test helpers for the sonicsync test suite."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest


def wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, or *timeout_s* expires."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(step_s)
    return False


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Async version of :func:`wait_until`; yields to the event loop between polls."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


class FakeClock:
    """Manually advanced millisecond clock for throttle tests."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.now_ms = float(start_ms)

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, delta_ms: float) -> None:
        self.now_ms += float(delta_ms)


class RecordingStore:
    """In-memory ``HistoryStore`` that remembers every append."""

    def __init__(self, *, fail_append: bool = False, fail_query: bool = False) -> None:
        self.rows: list[dict[str, Any]] = []
        self.fail_append = fail_append
        self.fail_query = fail_query

    def append(self, user_id, session_id, sample, coherence_index) -> None:
        if self.fail_append:
            raise RuntimeError("store unavailable")
        self.rows.append(
            {
                "user_id": user_id,
                "session_id": session_id,
                "sample": sample,
                "coherence_index": coherence_index,
            }
        )

    def query(self, user_id, limit=100):
        if self.fail_query:
            raise RuntimeError("store unavailable")
        return []


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()
