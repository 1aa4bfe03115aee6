"""
Signal conditioner.

Algorithm
---------
One pass per raw sample:

1. Sanitise the sample (non-finite values reuse the last valid sample,
   finite values are clamped to a safe magnitude).
2. Median filter over an adaptive window (3 – 7 samples, narrower at high
   heart rates).
3. Moving average over an adaptive window (5 – 11 samples).
4. Exponential moving average with a fixed alpha.
5. Baseline tracking: a slow exponential pull toward the minimum of the
   recent smoothed samples.
6. Optional harmonic enhancement: the smoothed signal is reinforced with
   copies delayed by 1×, 2× and 3× the current beat period.  The result is
   used for peak detection only.
7. Motion detection from the standard deviation of the raw samples.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Sequence

import numpy as np

from .config import DetectorConfig
from .ring_buffer import RingBuffer
from .state import DetectorState

logger = logging.getLogger(__name__)


def adaptive_window(
    base: int,
    maximum: int,
    bpm: float,
    min_bpm: float = 40.0,
    max_bpm: float = 200.0,
) -> int:
    """
    Return an odd filter window between *base* and *maximum* samples.

    The window shrinks linearly from *maximum* at ``min_bpm`` to *base* at
    ``max_bpm``, so fast rhythms are smoothed less; the result is rounded
    to the nearest odd integer.
    """
    if base < 1 or maximum < base:
        raise ValueError(f"Invalid window bounds: base={base}, maximum={maximum}")
    if max_bpm <= min_bpm:
        raise ValueError(f"Invalid BPM range: {min_bpm}..{max_bpm}")
    if bpm is None or not math.isfinite(bpm):
        bpm = min_bpm
    fraction = (min(max(bpm, min_bpm), max_bpm) - min_bpm) / (max_bpm - min_bpm)
    width = maximum - fraction * (maximum - base)
    odd = 2 * int(math.floor(width / 2.0)) + 1
    low = base if base % 2 else base + 1
    high = maximum if maximum % 2 else maximum - 1
    return int(min(max(odd, low), max(high, low)))


def harmonic_enhance(
    history: RingBuffer,
    bpm: Optional[float],
    sample_rate: float,
    weights: Sequence[float],
) -> Optional[float]:
    """
    Reinforce the newest sample of *history* with copies one, two and three
    beat periods back.

    Returns ``None`` when no estimate is available or the history is too
    short to hold even one delayed copy.
    """
    if bpm is None or bpm <= 0 or sample_rate <= 0 or len(history) == 0:
        return None
    period = int(round(60.0 * sample_rate / bpm))
    if period < 1:
        return None

    total = history[-1]
    weight_sum = 1.0
    for k, weight in enumerate(weights, start=1):
        lag = k * period
        if lag >= len(history):
            break
        total += weight * history[-1 - lag]
        weight_sum += weight
    if weight_sum == 1.0:
        return None
    return total / weight_sum


@dataclass
class ConditionedSample:
    raw: float
    filtered: float
    baseline: float
    enhanced: Optional[float]
    is_motion: bool

    @property
    def detection_value(self) -> float:
        """Value fed to the peak detector: enhanced when available."""
        return self.enhanced if self.enhanced is not None else self.filtered

    @property
    def normalized(self) -> float:
        return self.detection_value - self.baseline


class MotionDetector:
    """
    Flags motion artifact from the spread of recent raw samples.

    Parameters
    ----------
    window:
        Number of raw samples in the variance window.
    alpha:
        Weight of the newest standard deviation in the smoothed score.
    threshold:
        Score above which motion is reported (raw sample units).
    """

    def __init__(self, window: int = 15, alpha: float = 0.3, threshold: float = 5.0) -> None:
        self.threshold = threshold
        self.alpha = alpha
        self._raw = RingBuffer(window)
        self._score = 0.0

    def update(self, value: float) -> bool:
        self._raw.append(value)
        if self._raw.is_full:
            std = float(np.std(self._raw.values()))
            if not math.isfinite(std):
                std = 0.0
            self._score = self._score * (1.0 - self.alpha) + std * self.alpha
        return self.is_motion

    @property
    def score(self) -> float:
        return self._score

    @property
    def is_motion(self) -> bool:
        return self._score > self.threshold

    def reset(self) -> None:
        self._raw.clear()
        self._score = 0.0


class SignalConditioner:
    """
    Stateful denoising front end of the pulse pipeline.

    Parameters
    ----------
    config:
        Session configuration; window bounds, filter alphas, buffer sizes
        and the motion threshold are read from it.
    """

    def __init__(self, config: DetectorConfig) -> None:
        self.config = config
        self._median_input: Deque[float] = deque(maxlen=config.median_window_max)
        self._average_input: Deque[float] = deque(maxlen=config.moving_average_max)
        self._recent_smoothed: Deque[float] = deque(maxlen=config.baseline_window)
        self._signal = RingBuffer(config.signal_buffer_size)
        self._raw = RingBuffer(config.low_signal_window)
        self._motion = MotionDetector(
            window=config.motion_window,
            alpha=config.motion_alpha,
            threshold=config.motion_threshold,
        )
        self._smoothed: Optional[float] = None
        self._last_valid = 0.0
        self._count = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, value: float, state: DetectorState) -> ConditionedSample:
        """Run one raw sample through the filter cascade."""
        cfg = self.config
        raw = self.sanitize(value)
        self._raw.append(raw)
        bpm = state.bpm_estimate if state.bpm_estimate is not None else cfg.default_bpm

        median_window = adaptive_window(
            cfg.median_window_min, cfg.median_window_max, bpm, cfg.min_bpm, cfg.max_bpm
        )
        average_window = adaptive_window(
            cfg.moving_average_min, cfg.moving_average_max, bpm, cfg.min_bpm, cfg.max_bpm
        )

        self._median_input.append(raw)
        median = float(np.median(_tail(self._median_input, median_window)))

        self._average_input.append(median)
        averaged = float(np.mean(_tail(self._average_input, average_window)))

        if self._smoothed is None:
            smoothed = averaged
        else:
            smoothed = cfg.ema_alpha * averaged + (1.0 - cfg.ema_alpha) * self._smoothed
        self._smoothed = smoothed

        state.baseline = self._update_baseline(smoothed, state.baseline)
        self._signal.append(smoothed)

        enhanced = None
        if cfg.harmonic_enhancement:
            enhanced = harmonic_enhance(
                self._signal, state.bpm_estimate, state.sample_rate, cfg.harmonic_weights
            )

        is_motion = self._motion.update(raw)
        state.motion_score = self._motion.score

        return ConditionedSample(
            raw=raw,
            filtered=smoothed,
            baseline=state.baseline,
            enhanced=enhanced,
            is_motion=is_motion,
        )

    def sanitize(self, value: float) -> float:
        """Replace non-finite input with the last valid sample and clamp the rest."""
        try:
            value = float(value)
        except (TypeError, ValueError):
            value = math.nan
        if not math.isfinite(value):
            return self._last_valid
        limit = self.config.max_abs_sample
        value = min(max(value, -limit), limit)
        self._last_valid = value
        return value

    def recent_amplitude(self, window: int) -> float:
        """Peak-to-peak range of the last *window* filtered samples."""
        recent = self._signal.last(window)
        if recent.size == 0:
            return 0.0
        return float(np.ptp(recent))

    def raw_amplitude(self) -> float:
        """Peak-to-peak range of the last ``low_signal_window`` sanitised raw samples."""
        if len(self._raw) == 0:
            return 0.0
        return float(np.ptp(self._raw.values()))

    @property
    def signal_buffer(self) -> RingBuffer:
        """Recent filtered samples (read-only use)."""
        return self._signal

    @property
    def motion_score(self) -> float:
        return self._motion.score

    def reset(self) -> None:
        self._median_input.clear()
        self._average_input.clear()
        self._recent_smoothed.clear()
        self._signal.clear()
        self._raw.clear()
        self._motion.reset()
        self._smoothed = None
        self._last_valid = 0.0
        self._count = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_baseline(self, smoothed: float, baseline: float) -> float:
        cfg = self.config
        self._count += 1
        self._recent_smoothed.append(smoothed)
        if self._count == 1:
            baseline = smoothed
        elif self._count < cfg.baseline_min_samples:
            baseline = baseline * (1.0 - cfg.baseline_alpha) + smoothed * cfg.baseline_alpha
        else:
            floor = min(self._recent_smoothed)
            baseline = baseline * (1.0 - cfg.baseline_alpha) + floor * cfg.baseline_alpha
        if not math.isfinite(baseline):
            logger.debug("Baseline became non-finite; resetting to 0")
            baseline = 0.0
        return baseline


def _tail(values: Deque[float], n: int) -> np.ndarray:
    data = np.fromiter(values, dtype=np.float64, count=len(values))
    return data[-n:]
