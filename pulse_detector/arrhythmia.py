"""
Rhythm classification over recent RR intervals.

Each new interval triggers a fresh classification of the last few
intervals (first match wins):

1. bradycardia   – mean-RR heart rate below ``bradycardia_bpm``
2. tachycardia   – mean-RR heart rate above ``tachycardia_bpm``
3. extrasystole  – newest interval shorter than ``extrasystole_factor`` x mean
4. irregular     – RMSSD above ``rmssd_threshold_ms`` together with a relative
                   RR variation above ``rr_variation_threshold``

A cooldown after every emitted event suppresses repeats of any type.
"""

from __future__ import annotations

import enum
import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence

import numpy as np

from .config import DetectorConfig

logger = logging.getLogger(__name__)


class ArrhythmiaType(str, enum.Enum):
    BRADYCARDIA = "bradycardia"
    TACHYCARDIA = "tachycardia"
    EXTRASYSTOLE = "extrasystole"
    IRREGULAR = "irregular"


@dataclass(frozen=True)
class ArrhythmiaEvent:
    type: ArrhythmiaType
    timestamp: float        # ms, timestamp of the beat closing the interval
    bpm: float              # heart rate from the mean RR of the window
    rr: float               # the interval that triggered the event (ms)


@dataclass(frozen=True)
class RRStatistics:
    count: int
    mean_rr: float
    sdnn: float
    rmssd: float
    pnn50: float
    rr_variation: float
    bpm: float


def rmssd(intervals: Sequence[float]) -> float:
    """Root mean square of successive differences; 0.0 for fewer than two intervals."""
    rr = np.asarray(intervals, dtype=np.float64)
    if rr.size < 2:
        return 0.0
    return float(np.sqrt(np.mean(np.diff(rr) ** 2)))


def pnn50(intervals: Sequence[float], threshold_ms: float = 50.0) -> float:
    """Fraction of successive differences larger than *threshold_ms*."""
    rr = np.asarray(intervals, dtype=np.float64)
    if rr.size < 2:
        return 0.0
    return float(np.mean(np.abs(np.diff(rr)) > threshold_ms))


def mean_rr(intervals: Sequence[float], recency_weighted: bool = False) -> float:
    """Plain or linearly recency-weighted mean of *intervals*."""
    rr = np.asarray(intervals, dtype=np.float64)
    if rr.size == 0:
        return 0.0
    if not recency_weighted:
        return float(np.mean(rr))
    weights = np.arange(1, rr.size + 1, dtype=np.float64)
    return float(np.average(rr, weights=weights))


class ArrhythmiaAnalyzer:
    """
    Classifies each new RR interval and emits rate-limited events.

    Parameters
    ----------
    config:
        Session configuration (window size, rate thresholds, extrasystole
        factor, RMSSD / variation thresholds, cooldown).
    """

    def __init__(self, config: DetectorConfig) -> None:
        self.config = config
        self._intervals: Deque[float] = deque(maxlen=config.arrhythmia_history_size)
        self._last_event_time: Optional[float] = None
        self._last_timestamp = 0.0
        self._counts: Dict[ArrhythmiaType, int] = {t: 0 for t in ArrhythmiaType}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_interval(self, rr_ms: float, timestamp: Optional[float] = None) -> Optional[ArrhythmiaEvent]:
        """
        Consume one RR interval.

        Parameters
        ----------
        rr_ms:
            The interval in milliseconds.
        timestamp:
            Time (ms) of the beat closing the interval.  When omitted the
            previous timestamp advanced by *rr_ms* is used.

        Returns the emitted event, or ``None``.
        """
        if not math.isfinite(rr_ms) or rr_ms <= 0:
            return None
        if timestamp is None:
            timestamp = self._last_timestamp + rr_ms
        self._last_timestamp = timestamp
        self._intervals.append(float(rr_ms))

        window = self.window
        kind = self.classify(window)
        if kind is None:
            return None

        cooldown = self.config.arrhythmia_cooldown_ms
        if self._last_event_time is not None and timestamp - self._last_event_time < cooldown:
            logger.debug("Suppressed %s at %.0f ms (cooldown)", kind.value, timestamp)
            return None

        self._last_event_time = timestamp
        self._counts[kind] += 1
        avg = mean_rr(window, self.config.recency_weighted_mean)
        event = ArrhythmiaEvent(type=kind, timestamp=timestamp, bpm=60000.0 / avg, rr=float(rr_ms))
        logger.info("Arrhythmia: %s at %.0f ms (rr=%.0f ms, bpm=%.1f)", kind.value, timestamp, rr_ms, event.bpm)
        return event

    def classify(self, intervals: Sequence[float]) -> Optional[ArrhythmiaType]:
        """Classify the newest interval of *intervals*; ``None`` means normal rhythm."""
        cfg = self.config
        if len(intervals) < cfg.arrhythmia_min_intervals:
            return None
        avg = mean_rr(intervals, cfg.recency_weighted_mean)
        if avg <= 0:
            return None
        last = float(intervals[-1])
        bpm = 60000.0 / avg

        if bpm < cfg.bradycardia_bpm:
            return ArrhythmiaType.BRADYCARDIA
        if bpm > cfg.tachycardia_bpm:
            return ArrhythmiaType.TACHYCARDIA
        if last < avg * cfg.extrasystole_factor:
            return ArrhythmiaType.EXTRASYSTOLE
        variation = abs(last - avg) / avg
        if rmssd(intervals) > cfg.rmssd_threshold_ms and variation > cfg.rr_variation_threshold:
            return ArrhythmiaType.IRREGULAR
        return None

    def statistics(self) -> Optional[RRStatistics]:
        """Summary statistics of the analysis window, or ``None`` while it is empty."""
        window = self.window
        if not window:
            return None
        rr = np.asarray(window, dtype=np.float64)
        avg = mean_rr(window, self.config.recency_weighted_mean)
        sdnn = float(np.std(rr, ddof=1)) if rr.size > 1 else 0.0
        return RRStatistics(
            count=len(window),
            mean_rr=avg,
            sdnn=sdnn,
            rmssd=rmssd(window),
            pnn50=pnn50(window),
            rr_variation=abs(window[-1] - avg) / avg if avg > 0 else 0.0,
            bpm=60000.0 / avg if avg > 0 else 0.0,
        )

    @property
    def window(self) -> List[float]:
        """The most recent ``arrhythmia_window`` intervals."""
        return list(self._intervals)[-self.config.arrhythmia_window:]

    @property
    def intervals(self) -> List[float]:
        return list(self._intervals)

    @property
    def counts(self) -> Dict[ArrhythmiaType, int]:
        return dict(self._counts)

    @property
    def total_events(self) -> int:
        return sum(self._counts.values())

    def reset(self, full: bool = False) -> None:
        """Drop interval history and cooldown; *full* also clears the event tallies."""
        self._intervals.clear()
        self._last_event_time = None
        self._last_timestamp = 0.0
        if full:
            self._counts = {t: 0 for t in ArrhythmiaType}
