"""
BPM estimation from accepted peak-to-peak intervals.

Intervals are screened twice before they are stored: a hard physiological
band (``min_bpm`` / ``max_bpm`` with slack), then, once enough history
exists, a median/MAD outlier test.  The smoothed BPM follows the *median*
of the instantaneous-BPM history through a fixed-alpha EMA, so a single
spike cannot drag it.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from typing import Deque, List, Optional, Tuple

import numpy as np
from scipy.stats import median_abs_deviation

from .config import DetectorConfig
from .state import DetectorState

logger = logging.getLogger(__name__)


class IntervalStatus(enum.Enum):
    ACCEPTED = "accepted"
    OUT_OF_BAND = "out_of_band"
    OUTLIER = "outlier"


class BPMEstimator:
    """
    Interval screening, smoothed BPM and stability score.

    Parameters
    ----------
    config:
        Session configuration (BPM bounds, history sizes, MAD constant,
        EMA alpha, stability threshold).
    """

    def __init__(self, config: DetectorConfig) -> None:
        self.config = config
        self._bpm_history: Deque[float] = deque(maxlen=config.bpm_history_size)
        self._rr_history: Deque[float] = deque(maxlen=config.rr_history_size)
        self._smoothed = 0.0
        self._stability = 0.0
        self._consecutive_outliers = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_peak(self, timestamp: float, state: DetectorState) -> Tuple[IntervalStatus, Optional[float]]:
        """
        Register an accepted peak at *timestamp* (ms).

        Shifts the peak timestamps on *state*; when a previous peak exists
        the interval is screened and, if accepted, folded into the BPM
        estimate.  Returns the screening status and the raw interval
        (``None`` for the first peak).
        """
        state.previous_peak_time = state.last_peak_time
        state.last_peak_time = timestamp
        if state.previous_peak_time is None:
            return IntervalStatus.OUT_OF_BAND, None

        interval = timestamp - state.previous_peak_time
        status = self.add_interval(interval)
        self.publish(state)
        return status, interval

    def add_interval(self, interval_ms: float) -> IntervalStatus:
        """Screen one RR interval and, if it passes, update the estimate."""
        status = self.screen(interval_ms)
        if status is IntervalStatus.OUT_OF_BAND:
            logger.debug("Interval %.0f ms outside physiological band", interval_ms)
            return status

        if status is IntervalStatus.OUTLIER:
            self._consecutive_outliers += 1
            if self._consecutive_outliers < self.config.max_consecutive_outliers:
                logger.debug("Interval %.0f ms rejected by MAD filter", interval_ms)
                return status
            logger.info(
                "%d consecutive outlier intervals; adopting new rhythm at %.0f ms",
                self._consecutive_outliers,
                interval_ms,
            )
            self._bpm_history.clear()
            self._rr_history.clear()
            self._smoothed = 0.0

        self._consecutive_outliers = 0
        self._rr_history.append(float(interval_ms))
        self._bpm_history.append(60000.0 / interval_ms)
        self._update_smoothed()
        self._update_stability()
        return IntervalStatus.ACCEPTED

    def screen(self, interval_ms: float) -> IntervalStatus:
        """Classify *interval_ms* without touching any state."""
        cfg = self.config
        if not math.isfinite(interval_ms) or not cfg.min_rr_ms <= interval_ms <= cfg.max_rr_ms:
            return IntervalStatus.OUT_OF_BAND
        if len(self._rr_history) >= cfg.mad_min_history:
            rr = np.asarray(self._rr_history, dtype=np.float64)
            median = float(np.median(rr))
            mad = float(median_abs_deviation(rr, scale="normal"))
            spread = max(mad, cfg.mad_floor_fraction * median)
            if abs(interval_ms - median) > cfg.mad_k * spread:
                return IntervalStatus.OUTLIER
        return IntervalStatus.ACCEPTED

    def reported_bpm(self, in_warmup: bool) -> int:
        """BPM for display: the neutral value during warmup or with sparse history."""
        cfg = self.config
        if in_warmup or len(self._bpm_history) < cfg.min_bpm_history or self._smoothed <= 0:
            return cfg.neutral_bpm
        return int(round(min(max(self._smoothed, cfg.min_bpm), cfg.max_bpm)))

    @property
    def estimate(self) -> Optional[float]:
        """Smoothed BPM once enough history exists, otherwise ``None``."""
        if len(self._bpm_history) < self.config.min_bpm_history or self._smoothed <= 0:
            return None
        return float(min(max(self._smoothed, self.config.min_bpm), self.config.max_bpm))

    def publish(self, state: DetectorState) -> None:
        """Copy the current estimate onto the shared state."""
        state.smoothed_bpm = self._smoothed
        state.bpm_estimate = self.estimate
        state.bpm_stability = self._stability

    @property
    def smoothed_bpm(self) -> float:
        return self._smoothed

    @property
    def stability(self) -> float:
        return self._stability

    @property
    def bpm_history(self) -> List[float]:
        return list(self._bpm_history)

    @property
    def rr_intervals(self) -> List[float]:
        return list(self._rr_history)

    def reset(self) -> None:
        self._bpm_history.clear()
        self._rr_history.clear()
        self._smoothed = 0.0
        self._stability = 0.0
        self._consecutive_outliers = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_smoothed(self) -> None:
        median = float(np.median(np.asarray(self._bpm_history, dtype=np.float64)))
        if self._smoothed <= 0:
            self._smoothed = median
        else:
            alpha = self.config.bpm_alpha
            self._smoothed = alpha * median + (1.0 - alpha) * self._smoothed

    def _update_stability(self) -> None:
        cfg = self.config
        n = len(self._bpm_history)
        if n == 0:
            self._stability = 0.0
            return
        std = float(np.std(np.asarray(self._bpm_history, dtype=np.float64)))
        ratio = std / cfg.stability_std_threshold if cfg.stability_std_threshold > 0 else 0.0
        stability = max(0.0, 1.0 - ratio ** cfg.stability_exponent)
        if n < cfg.min_bpm_history:
            stability *= n / cfg.min_bpm_history
        self._stability = float(np.clip(stability, 0.0, 1.0))
