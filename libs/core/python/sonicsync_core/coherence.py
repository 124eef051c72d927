"""Coherence sub-factors, weighted combination and smoothing.

All functions are pure: history windows are passed in as plain sequences
and nothing here keeps state.  The running smoothed value lives with the
caller (see ``sonicsync.scoring.CoherenceScorer``).
"""

from __future__ import annotations

from collections.abc import Sequence
from itertools import islice
from math import cos, exp, fmod, pi, sqrt
from typing import NamedTuple

PHI = 1.618033988749895
REFERENCE_RATIOS: tuple[float, ...] = (1.0, PHI, PHI * PHI, 2.0, 3.0, 5.0, 8.0, 13.0)

NEUTRAL_SCORE = 0.5
"""Fallback for history-dependent factors that lack enough samples."""

MIN_STABILITY_SAMPLES = 5
MIN_PHASE_SAMPLES = 2
RECENT_WINDOW = 20

STABILITY_CV_GAIN = 5.0
CONSISTENCY_STD_GAIN = 2.0
ALIGNMENT_DECAY = 2.0

WEIGHT_STABILITY = 0.30
WEIGHT_ALIGNMENT = 0.35
WEIGHT_AMPLITUDE = 0.20
WEIGHT_PHASE = 0.15

SMOOTHING_FACTOR = 0.3
INITIAL_SMOOTHED = 0.5


class CoherenceFactors(NamedTuple):
    stability: float
    alignment: float
    amplitude: float
    phase: float


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _recent(values: Sequence[float], count: int = RECENT_WINDOW) -> list[float]:
    start = max(0, len(values) - count)
    return [float(v) for v in islice(values, start, None)]


def _mean_and_pstdev(values: Sequence[float]) -> tuple[float, float]:
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return mean, sqrt(variance)


def closest_reference_ratio(ratio: float) -> float:
    """Return the reference ratio nearest to *ratio* (first one wins on ties)."""
    best = REFERENCE_RATIOS[0]
    for candidate in REFERENCE_RATIOS[1:]:
        if abs(candidate - ratio) < abs(best - ratio):
            best = candidate
    return best


def frequency_stability(frequencies: Sequence[float] | None) -> float:
    """Map the coefficient of variation of recent frequencies to [0, 1].

    Needs at least five recorded frequencies; otherwise returns 0.5.
    """
    if not frequencies or len(frequencies) < MIN_STABILITY_SAMPLES:
        return NEUTRAL_SCORE
    mean, std_dev = _mean_and_pstdev(_recent(frequencies))
    coefficient_of_variation = std_dev / mean if mean > 0 else 1.0
    return max(0.0, 1.0 - coefficient_of_variation * STABILITY_CV_GAIN)


def harmonic_alignment(harmonic_stack: Sequence[float]) -> float:
    """Weighted closeness of each harmonic ratio to the reference ratios.

    The fundamental is ``harmonic_stack[0]``; harmonic *i* is weighted by
    ``1 / (i + 1)``.  An empty stack or a zero fundamental scores 0.
    """
    if not harmonic_stack:
        return 0.0
    fundamental = float(harmonic_stack[0])
    if fundamental == 0:
        return 0.0

    score = 0.0
    total_weight = 0.0
    for index, harmonic in enumerate(harmonic_stack):
        ratio = float(harmonic) / fundamental
        distance = abs(ratio - closest_reference_ratio(ratio))
        weight = 1.0 / (index + 1)
        score += exp(-distance * ALIGNMENT_DECAY) * weight
        total_weight += weight
    return score / total_weight if total_weight > 0 else 0.0


def amplitude_consistency(coherence_scores: Sequence[float] | None) -> float:
    """Spread of recently reported coherence scores mapped to [0, 1].

    Despite the name this reads the coherence-score history, not amplitude.
    """
    if not coherence_scores or len(coherence_scores) < MIN_STABILITY_SAMPLES:
        return NEUTRAL_SCORE
    _, std_dev = _mean_and_pstdev(_recent(coherence_scores))
    return max(0.0, 1.0 - std_dev * CONSISTENCY_STD_GAIN)


def phase_coherence(phase: float, timestamps: Sequence[float] | None) -> float:
    """Cosine of the current phase position within one cycle, shifted to [0, 1].

    Only the presence of two timestamps is checked; past phases are unused.
    """
    if not timestamps or len(timestamps) < MIN_PHASE_SAMPLES:
        return NEUTRAL_SCORE
    fraction = fmod(float(phase), 2 * pi) / (2 * pi)
    return cos(fraction * pi * 2) * 0.5 + 0.5


def combine_factors(factors: CoherenceFactors) -> float:
    return (
        factors.stability * WEIGHT_STABILITY
        + factors.alignment * WEIGHT_ALIGNMENT
        + factors.amplitude * WEIGHT_AMPLITUDE
        + factors.phase * WEIGHT_PHASE
    )


def smooth_coherence(raw: float, previous: float) -> float:
    """One exponential-moving-average step, clamped to [0, 1]."""
    return clamp01(SMOOTHING_FACTOR * raw + (1.0 - SMOOTHING_FACTOR) * previous)


def aggregate_collective(scores: Sequence[float]) -> float:
    """Fuse per-user coherence values into one group score.

    ``mean * 0.7 + synchronization * 0.3`` where synchronization falls with
    the population variance of the scores.  No scores at all yields 0.5.
    """
    if not scores:
        return NEUTRAL_SCORE
    values = [float(s) for s in scores]
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    synchronization = max(0.0, 1.0 - variance * 2)
    return clamp01(mean * 0.7 + synchronization * 0.3)
