"""
Peak validator.

Turns a raw peak candidate into an accept/reject decision with a
continuous confidence in [0, 1].

Algorithm
---------
Once the candidate clears a low confidence floor, four independent
sub-scores are computed, each with its own rejection gate:

1. **Shape** – the apex must be the local maximum within ``shape_radius``
   samples; the score combines rise/fall symmetry and steepness.
2. **Consistency** – apex amplitude against the recent accepted amplitudes,
   and the beat interval against the recent RR intervals, each checked
   against a loose (reject) and a strict (full score) band.
3. **Prominence** – height above the minimum of the preceding part of the
   beat period.
4. **Template correlation** – Pearson correlation between the window
   around the candidate and a running average of recent accepted peak
   shapes.  Auto-passes until a template exists.

The weighted fusion of the detector confidence and the four sub-scores is
multiplied by the BPM-stability factor.  A peak is accepted only when every
gate passes and the fused confidence exceeds ``acceptance_threshold``.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np

from .config import DetectorConfig
from .peak_detector import PeakCandidate
from .state import DetectorState

logger = logging.getLogger(__name__)


def normalize_window(window: np.ndarray) -> Optional[np.ndarray]:
    """Zero-mean, unit-variance copy of *window*; ``None`` if it is flat or non-finite."""
    window = np.asarray(window, dtype=np.float64)
    if window.size == 0 or not np.all(np.isfinite(window)):
        return None
    std = float(np.std(window))
    if std < 1e-12:
        return None
    return (window - float(np.mean(window))) / std


def pearson(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation of two equal-length windows; 0.0 when undefined."""
    za = normalize_window(a)
    zb = normalize_window(b)
    if za is None or zb is None or za.size != zb.size:
        return 0.0
    r = float(np.mean(za * zb))
    if not math.isfinite(r):
        return 0.0
    return float(np.clip(r, -1.0, 1.0))


class PeakTemplate:
    """
    Rolling average of recently accepted peak windows, kept normalized.

    Parameters
    ----------
    width:
        Number of samples per window.
    history:
        How many recent windows are averaged.
    """

    def __init__(self, width: int = 31, history: int = 5) -> None:
        self.width = width
        self._windows: Deque[np.ndarray] = deque(maxlen=history)
        self._shape: Optional[np.ndarray] = None

    def update(self, window: np.ndarray) -> bool:
        """Add one accepted peak window; returns ``False`` if it was unusable."""
        if len(window) != self.width:
            return False
        normalized = normalize_window(window)
        if normalized is None:
            return False
        self._windows.append(normalized)
        mean_shape = normalize_window(np.mean(np.stack(list(self._windows)), axis=0))
        if mean_shape is not None:
            self._shape = mean_shape
        return True

    def correlate(self, window: np.ndarray) -> Optional[float]:
        """Correlation of *window* with the template, or ``None`` if no template exists."""
        if self._shape is None:
            return None
        if len(window) != self.width:
            return 0.0
        return pearson(window, self._shape)

    @property
    def shape(self) -> Optional[np.ndarray]:
        return None if self._shape is None else self._shape.copy()

    @property
    def exists(self) -> bool:
        return self._shape is not None

    def clear(self) -> None:
        self._windows.clear()
        self._shape = None


@dataclass
class ValidationScores:
    detector: float = 0.0
    shape: float = 0.0
    consistency: float = 0.0
    prominence: float = 0.0
    template: float = 0.0


@dataclass
class PeakDecision:
    accepted: bool
    confidence: float
    scores: ValidationScores = field(default_factory=ValidationScores)
    reason: Optional[str] = None


class PeakValidator:
    """
    Multi-gate validator for peak candidates.

    Parameters
    ----------
    config:
        Session configuration (weights, gates, template geometry).
    """

    def __init__(self, config: DetectorConfig) -> None:
        self.config = config
        self._amplitudes: Deque[float] = deque(maxlen=config.consistency_history)
        self.template = PeakTemplate(config.template_width, config.template_history)
        self._consecutive_rejections = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(
        self,
        candidate: PeakCandidate,
        signal: np.ndarray,
        state: DetectorState,
        rr_intervals: Sequence[float],
    ) -> PeakDecision:
        """
        Score *candidate* against the normalized *signal* history.

        ``signal`` holds the normalized samples up to and including the
        current one; the apex position is derived from
        ``state.sample_index - candidate.index``.
        """
        cfg = self.config
        scores = ValidationScores(detector=candidate.detector_confidence)

        if candidate.detector_confidence < cfg.confidence_floor:
            return self._reject(scores, candidate.detector_confidence, "below confidence floor")

        signal = np.asarray(signal, dtype=np.float64)
        offset = state.sample_index - candidate.index
        apex = len(signal) - 1 - offset
        if apex < cfg.shape_radius or offset < 0:
            return self._reject(scores, candidate.detector_confidence, "insufficient history")

        low_amplitude = candidate.value < cfg.low_amplitude_ratio * candidate.threshold
        gates = []

        scores.shape = self.shape_score(signal, apex)
        required_shape = cfg.shape_min_score_low_amplitude if low_amplitude else cfg.shape_min_score
        if scores.shape < required_shape:
            gates.append("shape")

        amplitude_ok, amplitude_score = self._amplitude_consistency(candidate.value)
        interval_ok, interval_score = self._interval_consistency(
            candidate.timestamp, state.last_peak_time, rr_intervals
        )
        scores.consistency = 0.5 * (amplitude_score + interval_score)
        if not (amplitude_ok and interval_ok):
            gates.append("consistency")

        period_samples = self._period_samples(state)
        scores.prominence, prominence = self.prominence_score(
            signal, apex, period_samples, candidate.threshold
        )
        if prominence < cfg.prominence_min_ratio * candidate.threshold:
            gates.append("prominence")

        window = self._template_window(signal, apex, offset)
        correlation = self.template.correlate(window) if window is not None else None
        if correlation is None:
            scores.template = cfg.template_auto_pass if not self.template.exists else 0.0
        else:
            scores.template = max(0.0, correlation)
            required = (
                cfg.template_min_correlation_low_amplitude if low_amplitude else cfg.template_min_correlation
            )
            if correlation < required:
                gates.append("template")

        fused = (
            cfg.weight_detector * scores.detector
            + cfg.weight_shape * scores.shape
            + cfg.weight_consistency * scores.consistency
            + cfg.weight_prominence * scores.prominence
            + cfg.weight_template * scores.template
        )
        confidence = fused * self._stability_factor(state)
        if not math.isfinite(confidence):
            confidence = 0.0
        confidence = float(np.clip(confidence, 0.0, 1.0))

        if gates:
            return self._reject(scores, confidence, "failed " + ", ".join(gates))
        if confidence <= cfg.acceptance_threshold:
            return self._reject(scores, confidence, "confidence %.2f below acceptance" % confidence)

        self._accept(candidate, window, confidence)
        logger.debug(
            "Peak accepted at %.0f ms: conf=%.2f shape=%.2f cons=%.2f prom=%.2f tmpl=%.2f",
            candidate.timestamp,
            confidence,
            scores.shape,
            scores.consistency,
            scores.prominence,
            scores.template,
        )
        return PeakDecision(accepted=True, confidence=confidence, scores=scores)

    def shape_score(self, signal: np.ndarray, apex: int) -> float:
        """
        Symmetry and steepness of the apex within ``shape_radius`` samples.

        Returns 0.0 when the apex is not the local maximum of the segment.
        """
        r = self.config.shape_radius
        left = signal[max(0, apex - r):apex]
        right = signal[apex + 1:apex + r + 1]
        if left.size == 0 or right.size == 0:
            return 0.0
        peak = signal[apex]
        if np.any(left > peak) or np.any(right > peak):
            return 0.0

        rise = peak - float(left[0])
        fall = peak - float(right[-1])
        if rise <= 0 or fall <= 0:
            return 0.0
        symmetry = min(rise, fall) / max(rise, fall)
        height = max(peak, 1e-9)
        steepness = min(1.0, (rise + fall) / height)
        return float(np.clip(0.4 * symmetry + 0.6 * steepness, 0.0, 1.0))

    def prominence_score(
        self,
        signal: np.ndarray,
        apex: int,
        period_samples: float,
        threshold: float,
    ) -> Tuple[float, float]:
        """Return ``(score, prominence)`` of the apex over the preceding window."""
        width = max(self.config.shape_radius, int(round(self.config.prominence_period_fraction * period_samples)))
        preceding = signal[max(0, apex - width):apex]
        if preceding.size == 0:
            return 0.0, 0.0
        prominence = float(signal[apex] - np.min(preceding))
        if threshold <= 0:
            return 1.0, prominence
        score = float(np.clip(prominence / (3.0 * threshold), 0.0, 1.0))
        return score, prominence

    @property
    def amplitudes(self) -> List[float]:
        return list(self._amplitudes)

    @property
    def consecutive_rejections(self) -> int:
        return self._consecutive_rejections

    def reset(self) -> None:
        self._amplitudes.clear()
        self.template.clear()
        self._consecutive_rejections = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _amplitude_consistency(self, amplitude: float) -> Tuple[bool, float]:
        cfg = self.config
        if not self._amplitudes:
            return True, cfg.neutral_consistency
        reference = float(np.mean(self._amplitudes))
        if reference <= 0:
            return True, cfg.neutral_consistency
        deviation = abs(amplitude / reference - 1.0)
        return deviation <= cfg.amplitude_loose_band, _band_score(
            deviation, cfg.amplitude_strict_band, cfg.amplitude_loose_band
        )

    def _interval_consistency(
        self,
        timestamp: float,
        last_peak_time: Optional[float],
        rr_intervals: Sequence[float],
    ) -> Tuple[bool, float]:
        cfg = self.config
        if last_peak_time is None or not rr_intervals:
            return True, cfg.neutral_consistency
        recent = list(rr_intervals)[-cfg.consistency_history:]
        reference = float(np.mean(recent))
        if reference <= 0:
            return True, cfg.neutral_consistency
        ratio = (timestamp - last_peak_time) / reference
        if ratio > 1.0 + cfg.interval_loose_band:
            # Long gap: beats were probably missed; nothing to compare against.
            return True, cfg.neutral_consistency
        deviation = abs(ratio - 1.0)
        return deviation <= cfg.interval_loose_band, _band_score(
            deviation, cfg.interval_strict_band, cfg.interval_loose_band
        )

    def _template_window(self, signal: np.ndarray, apex: int, offset: int) -> Optional[np.ndarray]:
        width = self.config.template_width
        end = apex + min(offset, self.config.peak_lookahead) + 1
        start = end - width
        if start < 0 or end > len(signal):
            return None
        return signal[start:end]

    def _period_samples(self, state: DetectorState) -> float:
        bpm = state.bpm_estimate if state.bpm_estimate is not None else self.config.default_bpm
        return 60.0 * state.sample_rate / max(bpm, 1e-6)

    def _stability_factor(self, state: DetectorState) -> float:
        if state.bpm_estimate is None:
            return 1.0
        floor = self.config.stability_floor
        return floor + (1.0 - floor) * float(np.clip(state.bpm_stability, 0.0, 1.0))

    def _accept(self, candidate: PeakCandidate, window: Optional[np.ndarray], confidence: float) -> None:
        self._consecutive_rejections = 0
        self._amplitudes.append(candidate.value)
        if window is None:
            return
        if not self.template.exists or confidence >= self.config.template_update_confidence:
            self.template.update(window)

    def _reject(self, scores: ValidationScores, confidence: float, reason: str) -> PeakDecision:
        self._consecutive_rejections += 1
        logger.debug("Peak rejected (%s), conf=%.2f", reason, confidence)
        if self._consecutive_rejections >= self.config.max_consecutive_rejections:
            logger.info(
                "%d consecutive rejections; re-learning amplitude history and template",
                self._consecutive_rejections,
            )
            self.reset()
        reduced = float(np.clip(confidence * self.config.rejected_confidence_scale, 0.0, 1.0))
        return PeakDecision(accepted=False, confidence=reduced, scores=scores, reason=reason)


def _band_score(deviation: float, strict: float, loose: float) -> float:
    """1.0 inside the strict band, falling linearly to 0.5 at the loose edge, 0 beyond."""
    if deviation <= strict:
        return 1.0
    if deviation > loose or loose <= strict:
        return 0.0
    return 1.0 - 0.5 * (deviation - strict) / (loose - strict)
