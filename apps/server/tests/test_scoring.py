from __future__ import annotations

import pytest
from builders import GOLDEN_STACK, make_sample
from sonicsync_core import harmonic_alignment

from sonicsync.history import SlidingHistoryStore
from sonicsync.scoring import CoherenceScorer


def _expected_raw(alignment: float, phase: float) -> float:
    return 0.3 * 0.5 + 0.35 * alignment + 0.2 * 0.5 + 0.15 * phase


def test_first_golden_sample_scores_with_neutral_history_factors() -> None:
    scorer = CoherenceScorer(SlidingHistoryStore())
    sample = make_sample(stack=GOLDEN_STACK, phase=0.0, amplitude=0.5, timestamp=1000.0)

    factors = scorer.factors(sample, None)
    assert factors.stability == 0.5
    assert factors.amplitude == 0.5
    assert factors.alignment == pytest.approx(1.0, abs=1e-3)

    score = scorer.score(sample, "u1")
    alignment = harmonic_alignment(GOLDEN_STACK)
    # one timestamp on record: phase factor stays neutral
    raw = _expected_raw(alignment, 0.5)
    assert score == pytest.approx(0.3 * raw + 0.7 * 0.5)


def test_second_golden_sample_locks_phase() -> None:
    scorer = CoherenceScorer(SlidingHistoryStore())
    first = scorer.score(make_sample(timestamp=1000.0), "u1")

    sample = make_sample(timestamp=1100.0)
    # factors() does not record, so only the first timestamp is on file
    assert scorer.factors(sample, "u1").phase == 0.5

    second = scorer.score(sample, "u1")
    assert scorer.factors(make_sample(timestamp=1200.0), "u1").phase == pytest.approx(1.0)
    raw = _expected_raw(harmonic_alignment(GOLDEN_STACK), 1.0)
    assert second == pytest.approx(0.3 * raw + 0.7 * first)
    assert second > first


def test_score_records_before_scoring() -> None:
    history = SlidingHistoryStore()
    scorer = CoherenceScorer(history)
    for i in range(5):
        scorer.score(make_sample(timestamp=float(i)), "u1")
    assert len(history.get("u1")) == 5
    factors = scorer.factors(make_sample(), "u1")
    assert factors.stability == pytest.approx(1.0)
    assert factors.amplitude == pytest.approx(1.0)


def test_score_without_user_does_not_record() -> None:
    history = SlidingHistoryStore()
    scorer = CoherenceScorer(history)
    scorer.score(make_sample(), None)
    assert len(history) == 0


def test_smoothed_state_is_shared_across_users() -> None:
    scorer = CoherenceScorer(SlidingHistoryStore())
    a = scorer.score(make_sample(), "a")
    b = scorer.score(make_sample(), "b")
    assert scorer.smoothed == b
    assert b != a


def test_scores_stay_in_unit_interval() -> None:
    scorer = CoherenceScorer(SlidingHistoryStore())
    for i in range(50):
        value = scorer.score(
            make_sample(frequency=50.0 + 400.0 * (i % 2), stack=[1.0, 7.3, 0.2], timestamp=i),
            "u1",
        )
        assert 0.0 <= value <= 1.0


def test_reset_restores_initial_smoothed() -> None:
    scorer = CoherenceScorer(SlidingHistoryStore())
    scorer.score(make_sample(), "u1")
    scorer.reset()
    assert scorer.smoothed == 0.5
