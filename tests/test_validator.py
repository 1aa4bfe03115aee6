"""
Unit tests for PeakValidator and PeakTemplate.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_detector.config import DetectorConfig
from pulse_detector.peak_detector import PeakCandidate
from pulse_detector.state import DetectorState
from pulse_detector.validator import PeakTemplate, PeakValidator, normalize_window, pearson

APEX = 54
LENGTH = 60
PERIOD = 25


def pulse_train(length=LENGTH, apex=APEX, period=PERIOD, half_width=6.0) -> np.ndarray:
    """Triangular pulses of height 1 centred on *apex* and every *period* samples before it."""
    i = np.arange(length)
    d = ((i - apex + period // 2) % period) - period // 2
    return np.clip(1.0 - np.abs(d) / half_width, 0.0, None)


def make_candidate(value=1.0, confidence=0.9, timestamp=1800.0, threshold=0.3, index=95) -> PeakCandidate:
    return PeakCandidate(
        index=index,
        timestamp=timestamp,
        value=value,
        threshold=threshold,
        detector_confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestCorrelationHelpers:

    def test_normalize_flat_window(self):
        assert normalize_window(np.ones(10)) is None
        assert normalize_window(np.array([1.0, np.nan, 2.0])) is None

    def test_normalize_zero_mean_unit_variance(self):
        z = normalize_window(np.arange(10, dtype=float))
        assert np.mean(z) == pytest.approx(0.0, abs=1e-12)
        assert np.std(z) == pytest.approx(1.0)

    def test_pearson(self):
        a = np.sin(np.linspace(0, 3, 31))
        assert pearson(a, a) == pytest.approx(1.0)
        assert pearson(a, -a) == pytest.approx(-1.0)
        assert pearson(a, np.ones(31)) == 0.0
        assert pearson(a, a[:10]) == 0.0


class TestPeakTemplate:

    def test_no_template_yet(self):
        tpl = PeakTemplate(width=31, history=5)
        assert tpl.exists is False
        assert tpl.correlate(np.arange(31.0)) is None

    def test_update_and_correlate(self):
        tpl = PeakTemplate(width=31, history=5)
        window = pulse_train()[-31:]
        assert tpl.update(window) is True
        assert tpl.exists
        assert tpl.correlate(window) == pytest.approx(1.0)
        assert tpl.correlate(-window) == pytest.approx(-1.0)
        assert tpl.correlate(window[:20]) == 0.0

    def test_template_is_normalized(self):
        tpl = PeakTemplate(width=31, history=5)
        tpl.update(pulse_train()[-31:] * 5.0 + 3.0)
        shape = tpl.shape
        assert np.mean(shape) == pytest.approx(0.0, abs=1e-9)
        assert np.std(shape) == pytest.approx(1.0)

    def test_rejects_unusable_windows(self):
        tpl = PeakTemplate(width=31, history=5)
        assert tpl.update(np.ones(31)) is False
        assert tpl.update(np.arange(10.0)) is False
        assert tpl.exists is False


# ---------------------------------------------------------------------------
# PeakValidator
# ---------------------------------------------------------------------------

class TestPeakValidator:

    def setup_method(self):
        self.cfg = DetectorConfig()
        self.validator = PeakValidator(self.cfg)
        self.state = DetectorState.initial(self.cfg)
        self.state.sample_index = 100
        self.signal = pulse_train()

    def test_shape_score_of_clean_pulse(self):
        assert self.validator.shape_score(self.signal, APEX) == pytest.approx(1.0)

    def test_shape_score_off_apex_is_zero(self):
        assert self.validator.shape_score(self.signal, APEX - 2) == 0.0

    def test_prominence_score(self):
        score, prominence = self.validator.prominence_score(self.signal, APEX, 24.0, 0.3)
        assert prominence == pytest.approx(1.0)
        assert score == pytest.approx(1.0)

    def test_below_confidence_floor(self):
        decision = self.validator.validate(make_candidate(confidence=0.1), self.signal, self.state, [])
        assert decision.accepted is False
        assert decision.reason == "below confidence floor"
        assert decision.confidence == pytest.approx(0.1 * self.cfg.rejected_confidence_scale)

    def test_insufficient_history(self):
        decision = self.validator.validate(make_candidate(), self.signal[-8:], self.state, [])
        assert decision.accepted is False

    def test_first_clean_peak_accepted_and_seeds_template(self):
        decision = self.validator.validate(make_candidate(), self.signal, self.state, [])
        assert decision.accepted is True
        # 0.2*0.9 + 0.15*1 + 0.15*0.7 + 0.15*1 + 0.35*0.5 (template auto-pass)
        assert decision.confidence == pytest.approx(0.76)
        assert decision.scores.template == pytest.approx(self.cfg.template_auto_pass)
        # seeded even though below the usual update confidence
        assert decision.confidence < self.cfg.template_update_confidence
        assert self.validator.template.exists
        assert self.validator.amplitudes == [1.0]

    def test_consistent_second_peak_scores_higher(self):
        self.validator.validate(make_candidate(), self.signal, self.state, [])
        self.state.last_peak_time = 1800.0 - 833.0
        decision = self.validator.validate(make_candidate(), self.signal, self.state, [833.0])
        assert decision.accepted is True
        assert decision.scores.consistency == pytest.approx(1.0)
        assert decision.scores.template == pytest.approx(1.0)
        assert decision.confidence == pytest.approx(0.98)

    def test_amplitude_jump_fails_consistency(self):
        self.validator.validate(make_candidate(), self.signal, self.state, [])
        decision = self.validator.validate(make_candidate(value=2.0), self.signal, self.state, [])
        assert decision.accepted is False
        assert "consistency" in decision.reason

    def test_early_beat_fails_consistency(self):
        self.validator.validate(make_candidate(), self.signal, self.state, [])
        self.state.last_peak_time = 1800.0 - 400.0
        decision = self.validator.validate(make_candidate(), self.signal, self.state, [833.0] * 3)
        assert decision.accepted is False
        assert "consistency" in decision.reason

    def test_missed_beat_gap_is_not_penalised(self):
        self.validator.validate(make_candidate(), self.signal, self.state, [])
        self.state.last_peak_time = 1800.0 - 1666.0
        decision = self.validator.validate(make_candidate(), self.signal, self.state, [833.0] * 3)
        assert decision.accepted is True
        # matching amplitude, neutral interval score
        assert decision.scores.consistency == pytest.approx(0.5 * (1.0 + self.cfg.neutral_consistency))

    def test_misaligned_apex_fails_shape(self):
        decision = self.validator.validate(make_candidate(index=97), self.signal, self.state, [])
        assert decision.accepted is False
        assert "shape" in decision.reason

    def test_stability_factor_scales_confidence(self):
        self.state.bpm_estimate = 72.0
        self.state.bpm_stability = 0.0
        decision = self.validator.validate(make_candidate(), self.signal, self.state, [])
        # 0.76 * 0.75 falls below the acceptance threshold, then is scaled down as a rejection
        assert decision.accepted is False
        assert decision.confidence == pytest.approx(
            0.76 * self.cfg.stability_floor * self.cfg.rejected_confidence_scale
        )

    def test_relearns_after_consecutive_rejections(self):
        self.validator.validate(make_candidate(), self.signal, self.state, [])
        assert self.validator.template.exists
        for _ in range(self.cfg.max_consecutive_rejections - 1):
            self.validator.validate(make_candidate(confidence=0.1), self.signal, self.state, [])
        assert self.validator.template.exists
        self.validator.validate(make_candidate(confidence=0.1), self.signal, self.state, [])
        assert self.validator.template.exists is False
        assert self.validator.amplitudes == []
        assert self.validator.consecutive_rejections == 0

    def test_confidence_always_bounded(self):
        rng = np.random.default_rng(3)
        for _ in range(50):
            signal = rng.normal(0.0, 1.0, LENGTH)
            cand = make_candidate(value=float(signal[APEX]), confidence=float(rng.uniform()))
            decision = self.validator.validate(cand, signal, self.state, [800.0])
            assert 0.0 <= decision.confidence <= 1.0
