"""
Local signal quality and SNR proxy.

Quality blends the pulse amplitude (relative to the adaptive detection
threshold) with the regularity of recent RR intervals.  The SNR proxy
averages that quality with an inverse motion score; both lie in [0, 1].
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .config import DetectorConfig
from .state import DetectorState


class QualityEstimator:
    """
    Smoothed quality score and instability flag.

    Parameters
    ----------
    config:
        Session configuration (weights, EMA alpha, history size, thresholds).
    """

    def __init__(self, config: DetectorConfig) -> None:
        self.config = config

    def update(
        self,
        state: DetectorState,
        amplitude: float,
        rr_intervals: Sequence[float],
    ) -> float:
        """
        Fold one sample's amplitude and the RR history into ``state``.

        Updates ``quality_score``, ``quality_history``, ``quality_unstable``
        and ``snr`` on *state* and returns the new SNR proxy.
        """
        cfg = self.config
        amp_score = self.amplitude_score(amplitude, state.adaptive_threshold)
        rr_score = self.rr_stability(rr_intervals)

        local = cfg.quality_amplitude_weight * amp_score + (1.0 - cfg.quality_amplitude_weight) * rr_score
        quality = cfg.quality_alpha * local + (1.0 - cfg.quality_alpha) * state.quality_score
        if not math.isfinite(quality):
            quality = 0.0
        state.quality_score = float(np.clip(quality, 0.0, 1.0))

        history = state.quality_history
        history.append(state.quality_score)
        state.quality_unstable = (
            len(history) < history.maxlen
            or abs(history[-1] - history[0]) > cfg.quality_instability_delta
        )

        state.snr = 0.5 * (state.quality_score + self.inverse_motion(state.motion_score))
        return state.snr

    def amplitude_score(self, amplitude: float, threshold: float) -> float:
        if threshold <= 0 or not math.isfinite(amplitude):
            return 0.0
        return float(np.clip(amplitude / (2.0 * threshold), 0.0, 1.0))

    def rr_stability(self, rr_intervals: Sequence[float]) -> float:
        """Inverse relative spread of the RR history; 0.5 until enough intervals exist."""
        if len(rr_intervals) < self.config.rr_stability_min_samples:
            return 0.5
        rr = np.asarray(rr_intervals, dtype=np.float64)
        mean = float(np.mean(rr))
        if mean <= 0:
            return 0.0
        cv = float(np.std(rr)) / mean
        return 1.0 / (1.0 + self.config.rr_cv_scale * cv)

    def inverse_motion(self, motion_score: float) -> float:
        limit = 2.0 * self.config.motion_threshold
        if limit <= 0:
            return 1.0
        return float(np.clip(1.0 - motion_score / limit, 0.0, 1.0))
