"""Per-user sliding history of recent harmonic samples.

``UserHistory`` keeps four parallel bounded deques; ``SlidingHistoryStore``
maps user ids to them.  Neither class locks: the engine serialises access.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from sonicsync_core import harmonic_alignment

from .constants import HISTORY_WINDOW_SIZE
from .domain_models import HarmonicSample


def _bounded(maxlen: int) -> deque[float]:
    return deque(maxlen=maxlen)


@dataclass(slots=True)
class UserHistory:
    window_size: int = HISTORY_WINDOW_SIZE
    frequencies: deque[float] = field(init=False)
    coherence_scores: deque[float] = field(init=False)
    timestamps: deque[float] = field(init=False)
    harmonic_alignments: deque[float] = field(init=False)

    def __post_init__(self) -> None:
        self.window_size = max(1, int(self.window_size))
        self.frequencies = _bounded(self.window_size)
        self.coherence_scores = _bounded(self.window_size)
        self.timestamps = _bounded(self.window_size)
        self.harmonic_alignments = _bounded(self.window_size)

    def __len__(self) -> int:
        return len(self.frequencies)

    def append(self, sample: HarmonicSample) -> None:
        # deque(maxlen) drops from the left, so all four stay aligned.
        self.frequencies.append(sample.frequency_hz)
        self.coherence_scores.append(sample.coherence_index)
        self.timestamps.append(sample.timestamp_ms)
        self.harmonic_alignments.append(harmonic_alignment(sample.harmonic_stack))

    def clear(self) -> None:
        self.frequencies.clear()
        self.coherence_scores.clear()
        self.timestamps.clear()
        self.harmonic_alignments.clear()


class SlidingHistoryStore:
    def __init__(self, window_size: int = HISTORY_WINDOW_SIZE) -> None:
        self.window_size = max(1, int(window_size))
        self._histories: dict[str, UserHistory] = {}

    def __len__(self) -> int:
        return len(self._histories)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._histories

    def record(self, user_id: str, sample: HarmonicSample) -> UserHistory:
        history = self._histories.get(user_id)
        if history is None:
            history = UserHistory(self.window_size)
            self._histories[user_id] = history
        history.append(sample)
        return history

    def get(self, user_id: str) -> UserHistory | None:
        return self._histories.get(user_id)

    def reset(self, user_id: str) -> UserHistory:
        """Replace *user_id*'s history with an empty one (session start)."""
        history = UserHistory(self.window_size)
        self._histories[user_id] = history
        return history

    def discard(self, user_id: str) -> bool:
        return self._histories.pop(user_id, None) is not None

    def clear_all(self) -> None:
        self._histories.clear()

    def user_ids(self) -> list[str]:
        return list(self._histories)

    def summary(self, user_id: str) -> dict[str, Any] | None:
        """Count/min/max/avg of the recorded coherence scores, or None."""
        history = self._histories.get(user_id)
        if history is None or not history.coherence_scores:
            return None
        scores = np.fromiter(history.coherence_scores, dtype=np.float64)
        return {
            "count": int(scores.size),
            "min": float(scores.min()),
            "max": float(scores.max()),
            "avg": float(scores.mean()),
        }
