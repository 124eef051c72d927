from .coherence import (
    INITIAL_SMOOTHED,
    NEUTRAL_SCORE,
    PHI,
    REFERENCE_RATIOS,
    CoherenceFactors,
    aggregate_collective,
    amplitude_consistency,
    clamp01,
    closest_reference_ratio,
    combine_factors,
    frequency_stability,
    harmonic_alignment,
    phase_coherence,
    smooth_coherence,
)
from .feedback import (
    CoherenceFeedback,
    gain_modulation,
    generate_feedback,
    phase_shift,
    recommendation_for,
)

__all__ = [
    "INITIAL_SMOOTHED",
    "NEUTRAL_SCORE",
    "PHI",
    "REFERENCE_RATIOS",
    "CoherenceFactors",
    "CoherenceFeedback",
    "aggregate_collective",
    "amplitude_consistency",
    "clamp01",
    "closest_reference_ratio",
    "combine_factors",
    "frequency_stability",
    "gain_modulation",
    "generate_feedback",
    "harmonic_alignment",
    "phase_coherence",
    "phase_shift",
    "recommendation_for",
    "smooth_coherence",
]
