"""JSON cleanup for values headed to WebSocket clients, HTTP responses and SQLite.

Coherence values can turn NaN when a stored column was NULL, and numpy
scalars leak out of the history summary; both must become plain JSON.
"""

from __future__ import annotations

import math
from typing import Any

__all__ = ["sanitize_for_json", "sanitize_value"]


def _to_native(value: Any) -> Any:
    if hasattr(value, "ndim") and hasattr(value, "tolist"):
        return value.tolist()
    if hasattr(value, "item") and not isinstance(value, (str, bytes, dict, list, tuple)):
        return value.item()
    return value


def sanitize_for_json(obj: Any) -> tuple[Any, bool]:
    """Return ``(clean, replaced)`` where NaN/Inf floats in *obj* became ``None``.

    Mappings keep their keys, sequences become lists and numpy values are
    unwrapped, so the result passes ``json.dumps(allow_nan=False)``.
    """
    replaced = False

    def _clean(value: Any) -> Any:
        nonlocal replaced
        value = _to_native(value)
        if isinstance(value, float) and not math.isfinite(value):
            replaced = True
            return None
        if isinstance(value, dict):
            return {key: _clean(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [_clean(item) for item in value]
        return value

    return _clean(obj), replaced


def sanitize_value(value: Any) -> Any:
    return sanitize_for_json(value)[0]
