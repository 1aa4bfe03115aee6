"""
Peak candidate detector.

A two-state machine over the normalized (baseline-subtracted) signal:

* **idle** – inside the refractory period after the last accepted beat,
  or holding a candidate that waits for its look-ahead samples;
* **armed** – eligible to fire.

A candidate fires at a local apex that rises above the SNR-adaptive
threshold with negative curvature; its time is refined to sub-sample
precision by fitting a parabola through the apex and its two neighbours,
so beat intervals are not quantised to whole frames.  It is handed to the validator
``peak_lookahead`` samples later, once both flanks of the apex have been
observed.  Candidates inside the refractory window are dropped outright.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

import numpy as np

from .config import DetectorConfig
from .state import DetectorState

logger = logging.getLogger(__name__)


def interpolate_apex(x0: float, x1: float, x2: float) -> float:
    """
    Sub-sample offset of the vertex of the parabola through three samples.

    Returns a value in [-0.5, 0.5] (in samples, relative to the middle one)
    when *x1* is the largest; 0.0 when the three points are collinear.
    """
    denominator = x0 - 2.0 * x1 + x2
    if denominator == 0 or not np.isfinite(denominator):
        return 0.0
    delta = 0.5 * (x0 - x2) / denominator
    return float(np.clip(delta, -0.5, 0.5))


class DetectorPhase(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"


@dataclass(frozen=True)
class PeakCandidate:
    index: int                  # session sample index of the apex
    timestamp: float            # apex timestamp (ms)
    value: float                # normalized apex height
    threshold: float            # adaptive threshold at firing time
    detector_confidence: float


class PeakCandidateDetector:
    """
    Online apex detector with refractory gating.

    Parameters
    ----------
    config:
        Session configuration (threshold scaling, look-ahead, BPM bounds).
    """

    def __init__(self, config: DetectorConfig) -> None:
        self.config = config
        self._recent: Deque[Tuple[float, float]] = deque(maxlen=3)
        self._pending: Optional[PeakCandidate] = None
        self._phase = DetectorPhase.ARMED

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def adaptive_threshold(self, amplitude: float, snr: float) -> float:
        """
        Detection threshold for the current amplitude and SNR proxy.

        The base is a fixed fraction of the recent peak-to-peak amplitude
        (never below ``signal_threshold``); it is scaled up toward
        ``threshold_scale_low_snr`` when the SNR is poor and down toward
        ``threshold_scale_high_snr`` when it is good.
        """
        cfg = self.config
        base = max(cfg.signal_threshold, cfg.threshold_amplitude_ratio * max(amplitude, 0.0))
        snr = float(np.clip(snr, 0.0, 1.0))
        scale = cfg.threshold_scale_low_snr + (cfg.threshold_scale_high_snr - cfg.threshold_scale_low_snr) * snr
        return base * scale

    def update(self, normalized: float, timestamp: float, state: DetectorState) -> Optional[PeakCandidate]:
        """
        Feed one normalized sample.

        Returns a candidate whose look-ahead has completed, or ``None``.
        ``state.sample_index`` must already count the current sample.
        """
        self._recent.append((normalized, timestamp))

        ready = None
        if self._pending is not None and state.sample_index - self._pending.index >= self.config.peak_lookahead:
            ready = self._pending
            self._pending = None
            # The last beat may have been accepted after this apex was found.
            if self._in_refractory(ready.timestamp, state):
                logger.debug("Pending apex at %.0f ms dropped by refractory period", ready.timestamp)
                ready = None

        apex = self._find_apex(state)
        if apex is not None and (self._pending is None or apex.value > self._pending.value):
            if self._pending is not None:
                logger.debug("Pending apex at %.0f ms replaced by higher apex", self._pending.timestamp)
            self._pending = apex

        self._phase = self._current_phase(timestamp, state)
        return ready

    @property
    def phase(self) -> DetectorPhase:
        return self._phase

    @property
    def pending(self) -> Optional[PeakCandidate]:
        return self._pending

    def reset(self) -> None:
        self._recent.clear()
        self._pending = None
        self._phase = DetectorPhase.ARMED

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _find_apex(self, state: DetectorState) -> Optional[PeakCandidate]:
        if len(self._recent) < 3:
            return None
        (x0, t0), (x1, t1), (x2, t2) = self._recent
        threshold = state.adaptive_threshold

        curvature = x2 - 2.0 * x1 + x0
        is_apex = x1 > 0 and x1 > threshold and x0 <= x1 and x2 < x1 and curvature < 0
        if not is_apex:
            return None

        apex_time = t1 + interpolate_apex(x0, x1, x2) * 0.5 * (t2 - t0)
        if self._in_refractory(apex_time, state):
            logger.debug(
                "Candidate at %.0f ms suppressed by refractory period (%.0f ms since last beat)",
                apex_time,
                apex_time - state.last_peak_time,
            )
            return None

        amplitude_conf = min(1.0, x1 / (1.2 * threshold)) if threshold > 0 else 1.0
        confidence = 0.7 * amplitude_conf + 0.3 * float(np.clip(state.snr, 0.0, 1.0))
        return PeakCandidate(
            index=state.sample_index - 1,
            timestamp=apex_time,
            value=x1,
            threshold=threshold,
            detector_confidence=float(np.clip(confidence, 0.0, 1.0)),
        )

    def _in_refractory(self, timestamp: float, state: DetectorState) -> bool:
        return state.last_peak_time is not None and timestamp - state.last_peak_time < self.config.min_peak_interval_ms

    def _current_phase(self, timestamp: float, state: DetectorState) -> DetectorPhase:
        if self._pending is not None or self._in_refractory(timestamp, state):
            return DetectorPhase.IDLE
        return DetectorPhase.ARMED
