from __future__ import annotations

from dataclasses import dataclass
from math import pi
from typing import Any

from .coherence import clamp01

# (threshold, text) checked in descending order; first match wins.
RECOMMENDATION_TIERS: tuple[tuple[float, str], ...] = (
    (0.85, "Excellent coherence - maintain this state"),
    (0.7, "Good coherence - deepen your focus"),
    (0.5, "Moderate coherence - relax and breathe"),
    (0.3, "Low coherence - try slowing your breath"),
)
FALLBACK_RECOMMENDATION = "Very low coherence - take a moment to center"

PHASE_LOCK_THRESHOLD = 0.7


@dataclass(frozen=True, slots=True)
class CoherenceFeedback:
    coherence_index: float
    gain_modulation: float
    phase_shift: float
    recommendation: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "coherenceIndex": self.coherence_index,
            "gainModulation": self.gain_modulation,
            "phaseShift": self.phase_shift,
        }
        if self.recommendation is not None:
            payload["recommendation"] = self.recommendation
        return payload


def gain_modulation(coherence: float) -> float:
    """Gain factor for the tone generator; the three bands do not join up."""
    if coherence > 0.8:
        return 1.0 + (coherence - 0.8) * 2.5
    if coherence < 0.4:
        return 0.5 + coherence * 0.75
    return 0.8 + coherence * 0.4


def phase_shift(coherence: float) -> float:
    if coherence > PHASE_LOCK_THRESHOLD:
        return 0.0
    return (PHASE_LOCK_THRESHOLD - coherence) * pi / 4


def recommendation_for(coherence: float) -> str:
    for threshold, text in RECOMMENDATION_TIERS:
        if coherence > threshold:
            return text
    return FALLBACK_RECOMMENDATION


def generate_feedback(coherence: float) -> CoherenceFeedback:
    value = clamp01(coherence)
    return CoherenceFeedback(
        coherence_index=value,
        gain_modulation=gain_modulation(value),
        phase_shift=phase_shift(value),
        recommendation=recommendation_for(value),
    )
