"""CollectiveAggregator: latest coherence per user, fused into a group score."""

from __future__ import annotations

from sonicsync_core import aggregate_collective, clamp01


class CollectiveAggregator:
    def __init__(self) -> None:
        self._scores: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._scores)

    def update(self, user_id: str, score: float) -> None:
        self._scores[user_id] = clamp01(score)

    def get(self, user_id: str) -> float | None:
        return self._scores.get(user_id)

    def remove(self, user_id: str) -> bool:
        return self._scores.pop(user_id, None) is not None

    def clear(self) -> None:
        self._scores.clear()

    def user_ids(self) -> list[str]:
        return list(self._scores)

    def scores(self) -> dict[str, float]:
        return dict(self._scores)

    def group_score(self) -> float:
        return aggregate_collective(list(self._scores.values()))
