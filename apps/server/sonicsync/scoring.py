"""CoherenceScorer: four-factor coherence with one shared smoothed state."""

from __future__ import annotations

import logging

from sonicsync_core import (
    INITIAL_SMOOTHED,
    CoherenceFactors,
    amplitude_consistency,
    combine_factors,
    frequency_stability,
    harmonic_alignment,
    phase_coherence,
    smooth_coherence,
)

from .domain_models import HarmonicSample
from .history import SlidingHistoryStore

LOGGER = logging.getLogger(__name__)


class CoherenceScorer:
    """Score samples against a user's sliding history.

    The smoothed value is shared by every user scored through the same
    instance; it is not a per-user quantity.
    """

    def __init__(self, history: SlidingHistoryStore) -> None:
        self._history = history
        self._smoothed = INITIAL_SMOOTHED

    @property
    def smoothed(self) -> float:
        return self._smoothed

    def reset(self) -> None:
        self._smoothed = INITIAL_SMOOTHED

    def factors(self, sample: HarmonicSample, user_id: str | None) -> CoherenceFactors:
        history = self._history.get(user_id) if user_id else None
        if history is None:
            frequencies = coherence_scores = timestamps = None
        else:
            frequencies = history.frequencies
            coherence_scores = history.coherence_scores
            timestamps = history.timestamps
        return CoherenceFactors(
            stability=frequency_stability(frequencies),
            alignment=harmonic_alignment(sample.harmonic_stack),
            amplitude=amplitude_consistency(coherence_scores),
            phase=phase_coherence(sample.phase, timestamps),
        )

    def score(self, sample: HarmonicSample, user_id: str | None) -> float:
        """Record *sample* for *user_id*, then return the new smoothed coherence."""
        if user_id:
            self._history.record(user_id, sample)
        factors = self.factors(sample, user_id)
        raw = combine_factors(factors)
        self._smoothed = smooth_coherence(raw, self._smoothed)
        LOGGER.debug(
            "Scored user=%s stability=%.3f alignment=%.3f amplitude=%.3f phase=%.3f "
            "raw=%.3f smoothed=%.3f",
            user_id,
            factors.stability,
            factors.alignment,
            factors.amplitude,
            factors.phase,
            raw,
            self._smoothed,
        )
        return self._smoothed
