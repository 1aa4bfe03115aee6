"""
Heartbeat processor: the per-session entry point of the pulse pipeline.

One call to :meth:`HeartbeatProcessor.process_sample` per acquired frame
runs conditioning, quality estimation, candidate detection, validation,
BPM estimation and arrhythmia analysis, and always returns a well-formed
:class:`HeartbeatResult`.  The processor is synchronous and not meant to be
shared between threads; callers serialise their calls.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np

from .arrhythmia import ArrhythmiaAnalyzer, ArrhythmiaEvent, ArrhythmiaType, RRStatistics
from .bpm import BPMEstimator, IntervalStatus
from .conditioner import ConditionedSample, SignalConditioner
from .config import DetectorConfig
from .feedback import AudioFeedback, BeepScheduler
from .peak_detector import PeakCandidateDetector
from .quality import QualityEstimator
from .ring_buffer import RingBuffer
from .state import DetectorState
from .validator import PeakValidator

logger = logging.getLogger(__name__)

ArrhythmiaListener = Callable[[ArrhythmiaEvent], None]


@dataclass
class HeartbeatResult:
    bpm: int
    confidence: float
    is_peak: bool
    filtered_value: float
    is_motion_detected: bool
    is_quality_unstable: bool
    bpm_stability_score: float


@dataclass
class RRSnapshot:
    intervals: List[int]                # accepted RR intervals, oldest first (ms)
    last_peak_time: Optional[float]     # ms, None before the first accepted peak


class HeartbeatProcessor:
    """
    Real-time heartbeat detector for a stream of PPG intensity samples.

    Parameters
    ----------
    config:
        Detector configuration; defaults to :class:`DetectorConfig()`.
    feedback:
        Optional audio collaborator receiving ``play_beep(intensity)`` on
        accepted high-confidence peaks.
    on_arrhythmia:
        Optional listener called with every emitted :class:`ArrhythmiaEvent`.
    clock:
        Monotonic clock in seconds, used when a sample arrives without an
        explicit timestamp.
    """

    def __init__(
        self,
        config: Optional[DetectorConfig] = None,
        feedback: Optional[AudioFeedback] = None,
        on_arrhythmia: Optional[ArrhythmiaListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config if config is not None else DetectorConfig()
        self._clock = clock

        self._conditioner = SignalConditioner(self.config)
        self._quality = QualityEstimator(self.config)
        self._detector = PeakCandidateDetector(self.config)
        self._validator = PeakValidator(self.config)
        self._bpm = BPMEstimator(self.config)
        self._arrhythmia = ArrhythmiaAnalyzer(self.config)
        self._beeps = BeepScheduler(
            feedback,
            min_confidence=self.config.beep_min_confidence,
            min_interval_ms=self.config.min_beep_interval_ms,
        )
        self._normalized = RingBuffer(self.config.signal_buffer_size)
        self._listeners: List[ArrhythmiaListener] = []
        if on_arrhythmia is not None:
            self._listeners.append(on_arrhythmia)

        self._state = DetectorState.initial(self.config)
        self._monitoring = True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_sample(self, value: float, timestamp_ms: Optional[float] = None) -> HeartbeatResult:
        """
        Process one raw intensity sample.

        Parameters
        ----------
        value:
            Raw sample (e.g. mean red or green brightness of the frame).
            Non-finite values are replaced by the last valid sample.
        timestamp_ms:
            Acquisition time in milliseconds.  Defaults to the session clock.
        """
        if not self._monitoring:
            return self._neutral_result(0.0, False)

        cfg = self.config
        state = self._state
        now = float(timestamp_ms) if timestamp_ms is not None else self._clock() * 1000.0

        if state.warmup_start is None:
            state.warmup_start = now
        self._track_sample_interval(now)
        state.sample_index += 1

        sample = self._conditioner.process(value, state)
        self._normalized.append(sample.normalized)

        if self._check_low_signal():
            return self._neutral_result(sample.filtered, sample.is_motion)

        amplitude = self._conditioner.recent_amplitude(cfg.amplitude_window)
        snr = self._quality.update(state, amplitude, self._bpm.rr_intervals)
        state.adaptive_threshold = self._detector.adaptive_threshold(amplitude, snr)

        in_warmup = state.in_warmup(now, cfg.warmup_ms)
        is_peak = False
        candidate = self._detector.update(sample.normalized, now, state)
        if candidate is not None:
            decision = self._validator.validate(
                candidate, self._normalized.values(), state, self._bpm.rr_intervals
            )
            state.last_confidence = decision.confidence
            if decision.accepted:
                is_peak = True
                self._on_peak(candidate.timestamp, decision.confidence, in_warmup)

        return HeartbeatResult(
            bpm=self._bpm.reported_bpm(in_warmup),
            confidence=self._display_confidence(now, sample),
            is_peak=is_peak,
            filtered_value=sample.filtered,
            is_motion_detected=sample.is_motion,
            is_quality_unstable=state.quality_unstable,
            bpm_stability_score=float(np.clip(state.bpm_stability, 0.0, 1.0)),
        )

    def get_rr_intervals(self) -> RRSnapshot:
        """Accepted RR intervals and the time of the last accepted peak."""
        return RRSnapshot(
            intervals=[int(round(rr)) for rr in self._bpm.rr_intervals],
            last_peak_time=self._state.last_peak_time,
        )

    def add_arrhythmia_listener(self, listener: ArrhythmiaListener) -> None:
        self._listeners.append(listener)

    def set_monitoring(self, enabled: bool) -> None:
        """Start (restarting the warmup clock) or stop monitoring; stopping resets detection."""
        if enabled:
            self._state.warmup_start = None
            self._monitoring = True
            logger.info("Monitoring started")
        else:
            self.reset()
            self._monitoring = False
            logger.info("Monitoring stopped")

    def reset(self) -> None:
        """Clear every buffer and counter; arrhythmia tallies are kept."""
        self._conditioner.reset()
        self._detector.reset()
        self._validator.reset()
        self._bpm.reset()
        self._arrhythmia.reset()
        self._beeps.reset()
        self._normalized.clear()
        self._state = DetectorState.initial(self.config)
        logger.info("Heartbeat processor reset")

    def full_reset(self) -> None:
        """:meth:`reset` plus the cross-session arrhythmia tallies."""
        self.reset()
        self._arrhythmia.reset(full=True)
        logger.info("Arrhythmia tallies cleared")

    @property
    def monitoring(self) -> bool:
        return self._monitoring

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def signal_buffer(self) -> RingBuffer:
        return self._conditioner.signal_buffer

    @property
    def normalized_buffer(self) -> RingBuffer:
        return self._normalized

    @property
    def arrhythmia_counts(self) -> Dict[ArrhythmiaType, int]:
        return self._arrhythmia.counts

    @property
    def rr_statistics(self) -> Optional[RRStatistics]:
        return self._arrhythmia.statistics()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _track_sample_interval(self, now: float) -> None:
        state = self._state
        if state.last_timestamp is not None:
            gap = now - state.last_timestamp
            if 0 < gap <= self.config.max_sample_gap_ms:
                alpha = self.config.sample_interval_alpha
                state.sample_interval_ms = alpha * gap + (1.0 - alpha) * state.sample_interval_ms
        state.last_timestamp = now

    def _check_low_signal(self) -> bool:
        """Count weak samples; soft-reset detection once the limit is reached."""
        cfg = self.config
        state = self._state
        # each sample is judged by the spread of the few raw samples ending at it
        if self._conditioner.raw_amplitude() < cfg.low_signal_threshold:
            state.low_signal_count += 1
        else:
            state.low_signal_count = 0

        if state.low_signal_count == cfg.low_signal_frames:
            logger.info("Signal too weak for %d samples; resetting peak detection", cfg.low_signal_frames)
            self._detector.reset()
            self._validator.reset()
            self._bpm.reset()
            self._arrhythmia.reset()
            self._beeps.reset()
            state.clear_peaks()
        return state.low_signal_count >= cfg.low_signal_frames

    def _on_peak(self, timestamp: float, confidence: float, in_warmup: bool) -> None:
        status, interval = self._bpm.add_peak(timestamp, self._state)
        if interval is not None and status is not IntervalStatus.OUT_OF_BAND:
            event = self._arrhythmia.add_interval(interval, timestamp)
            if event is not None:
                self._notify(event)
        self._beeps.maybe_beep(timestamp, confidence, in_warmup)

    def _notify(self, event: ArrhythmiaEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Arrhythmia listener failed: %s", e)

    def _display_confidence(self, now: float, sample: ConditionedSample) -> float:
        state = self._state
        if state.last_peak_time is None:
            return 0.0
        age = max(0.0, now - state.last_peak_time)
        freshness = max(0.0, 1.0 - age / self.config.peak_stale_ms)
        confidence = state.last_confidence * freshness
        if sample.is_motion:
            confidence *= self.config.motion_confidence_penalty
        if not np.isfinite(confidence):
            return 0.0
        return float(np.clip(confidence, 0.0, 1.0))

    def _neutral_result(self, filtered: float, is_motion: bool) -> HeartbeatResult:
        return HeartbeatResult(
            bpm=self.config.neutral_bpm,
            confidence=0.0,
            is_peak=False,
            filtered_value=filtered,
            is_motion_detected=is_motion,
            is_quality_unstable=True,
            bpm_stability_score=0.0,
        )
