"""Runtime constants shared by the engine, store and API; single source of truth."""

from __future__ import annotations

from typing import Final

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
FEEDBACK_INTERVAL_MS: Final[int] = 3000
"""Minimum spacing between two ``coherence-update`` emissions."""

HISTORY_WINDOW_SIZE: Final[int] = 100
"""Per-user cap on each of the four parallel history sequences."""

UNKNOWN_SESSION_ID: Final[str] = "unknown"
"""Session id persisted when neither the event nor the engine carries one."""

# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
HISTORY_QUERY_LIMIT: Final[int] = 100
"""Maximum number of persisted records returned by one history query."""

WRITE_QUEUE_MAXSIZE: Final[int] = 256
"""Pending fire-and-forget writes kept before the oldest is evicted."""
