"""Domain model objects for the SonicSync backend.

Typed dataclasses for the values that cross the event bus and the history
store, while keeping the camelCase wire format of the audio bridge stable.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sonicsync_shared.contracts import ENGINE_SOURCE_ID, ESSENCE_LABELS


class Waveform(StrEnum):
    SINE = "sine"
    SQUARE = "square"
    SAWTOOTH = "sawtooth"
    TRIANGLE = "triangle"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def ms_to_utc_iso(timestamp_ms: float) -> str:
    return datetime.fromtimestamp(float(timestamp_ms) / 1000.0, tz=UTC).isoformat()


def _require_float(payload: Mapping[str, Any], key: str) -> float:
    if key not in payload:
        raise ValueError(f"{key} is required")
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be numeric, got {value!r}")
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"{key} must be finite, got {value!r}")
    return out


def payload_of(detail: Any) -> dict[str, Any]:
    """Extract the payload mapping from a bus event detail.

    Accepts a :class:`BusEvent`, a mapping carrying a ``payload`` key, or a
    bare payload mapping.  Anything else yields an empty dict.
    """
    if isinstance(detail, BusEvent):
        return dict(detail.payload)
    if isinstance(detail, Mapping):
        inner = detail.get("payload")
        if isinstance(inner, Mapping):
            return dict(inner)
        return dict(detail)
    return {}


# ---------------------------------------------------------------------------
# 1) HarmonicSample
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HarmonicSample:
    """One harmonic-analysis measurement produced by the audio bridge."""

    frequency_hz: float
    amplitude: float
    harmonic_stack: tuple[float, ...]
    phase: float
    coherence_index: float
    timestamp_ms: float
    waveform: Waveform = Waveform.SINE

    def __post_init__(self) -> None:
        if self.frequency_hz <= 0:
            raise ValueError(f"frequency must be positive, got {self.frequency_hz!r}")
        if self.amplitude < 0:
            raise ValueError(f"amplitude must be >= 0, got {self.amplitude!r}")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> HarmonicSample:
        if not isinstance(payload, Mapping):
            raise ValueError("sonicData must be an object")
        raw_stack = payload.get("harmonicStack", [])
        if not isinstance(raw_stack, (list, tuple)):
            raise ValueError("harmonicStack must be an array")
        stack: list[float] = []
        for index, value in enumerate(raw_stack):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"harmonicStack[{index}] must be numeric, got {value!r}")
            if not math.isfinite(float(value)):
                raise ValueError(f"harmonicStack[{index}] must be finite")
            stack.append(float(value))
        waveform_raw = payload.get("waveform", Waveform.SINE.value)
        try:
            waveform = Waveform(str(waveform_raw))
        except ValueError:
            raise ValueError(f"unknown waveform {waveform_raw!r}") from None
        return cls(
            frequency_hz=_require_float(payload, "currentFrequency"),
            amplitude=_require_float(payload, "amplitude"),
            harmonic_stack=tuple(stack),
            phase=_require_float(payload, "phase"),
            coherence_index=_require_float(payload, "coherenceIndex"),
            timestamp_ms=_require_float(payload, "timestamp"),
            waveform=waveform,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "currentFrequency": self.frequency_hz,
            "amplitude": self.amplitude,
            "harmonicStack": list(self.harmonic_stack),
            "phase": self.phase,
            "coherenceIndex": self.coherence_index,
            "timestamp": self.timestamp_ms,
            "waveform": self.waveform.value,
        }


# ---------------------------------------------------------------------------
# 2) CoherenceRecord: one persisted history row
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CoherenceRecord:
    user_id: str
    session_id: str
    frequency_hz: float
    coherence_index: float
    amplitude: float
    timestamp_utc: str
    record_id: int | None = None

    @classmethod
    def from_sample(
        cls,
        user_id: str,
        session_id: str,
        sample: HarmonicSample,
        coherence_index: float,
    ) -> CoherenceRecord:
        return cls(
            user_id=user_id,
            session_id=session_id,
            frequency_hz=sample.frequency_hz,
            coherence_index=float(coherence_index),
            amplitude=sample.amplitude,
            timestamp_utc=ms_to_utc_iso(sample.timestamp_ms),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "frequencyHz": self.frequency_hz,
            "coherenceIndex": self.coherence_index,
            "amplitude": self.amplitude,
            "timestamp": self.timestamp_utc,
        }


# ---------------------------------------------------------------------------
# 3) BusEvent: envelope for everything the engine publishes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BusEvent:
    type: str
    payload: dict[str, Any]
    source_id: str = ENGINE_SOURCE_ID
    timestamp_utc: str = field(default_factory=utc_now_iso)
    essence_labels: tuple[str, ...] = ESSENCE_LABELS

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "sourceId": self.source_id,
            "timestamp": self.timestamp_utc,
            "payload": dict(self.payload),
            "essenceLabels": list(self.essence_labels),
        }
