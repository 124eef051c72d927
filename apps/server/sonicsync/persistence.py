"""Fire-and-forget persistence of scored samples.

``HistoryWriter`` manages a bounded queue of pending writes and a single
daemon thread that hands them to the history store one at a time.  The
scoring path only enqueues; it never waits for the store.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from threading import RLock, Thread
from typing import Protocol

from .constants import HISTORY_QUERY_LIMIT, WRITE_QUEUE_MAXSIZE
from .domain_models import CoherenceRecord, HarmonicSample

LOGGER = logging.getLogger(__name__)

_EVICTION_LOG_INTERVAL_S = 10.0


class HistoryStore(Protocol):
    def append(
        self,
        user_id: str,
        session_id: str,
        sample: HarmonicSample,
        coherence_index: float,
    ) -> None: ...

    def query(self, user_id: str, limit: int = HISTORY_QUERY_LIMIT) -> list[CoherenceRecord]: ...


class NullHistoryStore:
    """Store that keeps nothing; used when persistence is disabled."""

    def append(
        self,
        user_id: str,
        session_id: str,
        sample: HarmonicSample,
        coherence_index: float,
    ) -> None:
        return None

    def query(self, user_id: str, limit: int = HISTORY_QUERY_LIMIT) -> list[CoherenceRecord]:
        return []


@dataclass(frozen=True, slots=True)
class PendingWrite:
    user_id: str
    session_id: str
    sample: HarmonicSample
    coherence_index: float


class HistoryWriter:
    """Threaded worker that drains pending writes into a :class:`HistoryStore`.

    Parameters
    ----------
    store:
        Destination for every write.
    maxsize:
        Pending writes kept while the store is slow or down.  When full, the
        oldest pending write is dropped to make room for the newest.
    """

    def __init__(self, store: HistoryStore, maxsize: int = WRITE_QUEUE_MAXSIZE) -> None:
        self._store = store
        self._lock = RLock()
        self._queue: deque[PendingWrite] = deque(maxlen=max(1, int(maxsize)))
        self._thread: Thread | None = None
        self._active: PendingWrite | None = None
        self._closed = False
        self._written = 0
        self._failed = 0
        self._evicted = 0
        self._last_eviction_log_ts = 0.0

    # -- public API -----------------------------------------------------------

    @property
    def store(self) -> HistoryStore:
        return self._store

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue) + (1 if self._active is not None else 0)

    def submit(
        self,
        user_id: str,
        session_id: str,
        sample: HarmonicSample,
        coherence_index: float,
    ) -> bool:
        """Enqueue one write.  Returns ``False`` once the writer is closed."""
        item = PendingWrite(user_id, session_id, sample, float(coherence_index))
        with self._lock:
            if self._closed:
                LOGGER.warning("History writer closed; dropping write for user %s", user_id)
                return False
            if len(self._queue) == self._queue.maxlen:
                evicted = self._queue[0]
                self._evicted += 1
                now = time.monotonic()
                if now - self._last_eviction_log_ts >= _EVICTION_LOG_INTERVAL_S:
                    self._last_eviction_log_ts = now
                    LOGGER.warning(
                        "History write queue full (%d); evicting pending write for user %s "
                        "(%d evicted so far)",
                        self._queue.maxlen,
                        evicted.user_id,
                        self._evicted,
                    )
            self._queue.append(item)
            self._ensure_worker_running()
        return True

    def wait(self, timeout_s: float = 5.0) -> bool:
        """Block until all queued writes complete or *timeout_s* elapses.

        Returns ``True`` when all work finished, ``False`` on timeout.
        """
        deadline = time.monotonic() + max(0.0, timeout_s)
        while True:
            with self._lock:
                worker = self._thread
                busy = bool(self._queue) or self._active is not None
                worker_alive = bool(worker and worker.is_alive())
            if not busy and not worker_alive:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LOGGER.warning(
                    "History writer wait timed out after %.1fs (pending=%d)",
                    timeout_s,
                    self.pending,
                )
                return False
            if worker is not None and worker_alive:
                worker.join(timeout=min(0.2, remaining))
            else:
                time.sleep(min(0.05, remaining))

    def close(self, timeout_s: float | None = None) -> bool:
        """Refuse new writes; optionally wait for pending ones."""
        with self._lock:
            self._closed = True
        if timeout_s is None:
            return True
        return self.wait(timeout_s)

    def stats(self) -> dict[str, int | bool]:
        with self._lock:
            return {
                "pending": len(self._queue) + (1 if self._active is not None else 0),
                "written": self._written,
                "failed": self._failed,
                "evicted": self._evicted,
                "closed": self._closed,
            }

    # -- internals ------------------------------------------------------------

    def _ensure_worker_running(self) -> None:
        """Start a new worker thread if none is alive.

        Must be called while holding ``self._lock``.
        """
        worker = self._thread
        if worker is None or not worker.is_alive():
            worker = Thread(
                target=self._worker_loop,
                name="coherence-history-writer",
                daemon=True,
            )
            self._thread = worker
            worker.start()

    def _worker_loop(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._active = None
                    self._thread = None
                    return
                item = self._queue.popleft()
                self._active = item
            try:
                self._store.append(
                    item.user_id,
                    item.session_id,
                    item.sample,
                    item.coherence_index,
                )
            except Exception:
                with self._lock:
                    self._failed += 1
                LOGGER.warning(
                    "Failed to store coherence data for user %s (session %s)",
                    item.user_id,
                    item.session_id,
                    exc_info=True,
                )
            else:
                with self._lock:
                    self._written += 1
            finally:
                with self._lock:
                    self._active = None
