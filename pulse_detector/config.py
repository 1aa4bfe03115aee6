"""
Detector configuration.

All thresholds, window sizes, weights and timing constants used by the
pulse pipeline live in a single frozen dataclass, built once when a
monitoring session starts.  The values are empirically tuned defaults,
not physical constants: override them with :func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class DetectorConfig:
    """
    Tunable parameters of the heartbeat detector.

    Time values are in milliseconds, rates in BPM, window sizes in samples.
    Signal thresholds are in the units of the incoming intensity samples
    (e.g. mean green-channel brightness, 0 – 255).
    """

    # -- physiology / session ------------------------------------------
    min_bpm: float = 40.0
    max_bpm: float = 200.0
    default_bpm: float = 75.0          # assumed rate before any estimate exists
    neutral_bpm: int = 0               # reported while no trustworthy estimate exists
    sample_rate: float = 30.0          # nominal frames per second
    sample_interval_alpha: float = 0.1  # EMA weight of measured frame intervals
    max_sample_gap_ms: float = 1000.0   # longer gaps are not folded into the frame interval
    warmup_ms: float = 1500.0
    max_abs_sample: float = 1e6

    # -- signal conditioner --------------------------------------------
    median_window_min: int = 3
    median_window_max: int = 7
    moving_average_min: int = 5
    moving_average_max: int = 11
    ema_alpha: float = 0.3
    baseline_min_samples: int = 10
    baseline_window: int = 15
    baseline_alpha: float = 0.1
    signal_buffer_size: int = 150
    amplitude_window: int = 60
    harmonic_enhancement: bool = True
    harmonic_weights: Tuple[float, ...] = (0.5, 0.3, 0.2)
    motion_window: int = 15
    motion_alpha: float = 0.3
    motion_threshold: float = 5.0
    motion_confidence_penalty: float = 0.6

    # -- quality / SNR -------------------------------------------------
    quality_alpha: float = 0.2
    quality_amplitude_weight: float = 0.6
    quality_history_size: int = 5
    quality_instability_delta: float = 0.15
    rr_stability_min_samples: int = 5
    rr_cv_scale: float = 10.0

    # -- peak candidate detector ---------------------------------------
    signal_threshold: float = 0.15
    threshold_amplitude_ratio: float = 0.3
    threshold_scale_low_snr: float = 1.5
    threshold_scale_high_snr: float = 0.5
    peak_lookahead: int = 5
    low_signal_threshold: float = 0.05
    low_signal_window: int = 5         # raw samples whose spread decides a weak sample
    low_signal_frames: int = 10

    # -- peak validator ------------------------------------------------
    confidence_floor: float = 0.3
    shape_radius: int = 5
    shape_min_score: float = 0.4
    shape_min_score_low_amplitude: float = 0.5
    low_amplitude_ratio: float = 1.5
    consistency_history: int = 5
    amplitude_loose_band: float = 0.5
    amplitude_strict_band: float = 0.2
    interval_loose_band: float = 0.4
    interval_strict_band: float = 0.2
    neutral_consistency: float = 0.7
    prominence_period_fraction: float = 0.5
    prominence_min_ratio: float = 0.5
    template_width: int = 31
    template_history: int = 5
    template_min_correlation: float = 0.5
    template_min_correlation_low_amplitude: float = 0.65
    template_auto_pass: float = 0.5
    template_update_confidence: float = 0.8
    weight_detector: float = 0.20
    weight_shape: float = 0.15
    weight_consistency: float = 0.15
    weight_prominence: float = 0.15
    weight_template: float = 0.35
    stability_floor: float = 0.75
    acceptance_threshold: float = 0.65
    rejected_confidence_scale: float = 0.3
    max_consecutive_rejections: int = 8
    peak_stale_ms: float = 3000.0

    # -- BPM estimator -------------------------------------------------
    bpm_history_size: int = 8
    rr_history_size: int = 16
    bpm_alpha: float = 0.2
    rr_band_slack: float = 0.2
    mad_k: float = 2.5
    mad_min_history: int = 4
    mad_floor_fraction: float = 0.05
    max_consecutive_outliers: int = 3
    min_bpm_history: int = 3
    stability_std_threshold: float = 15.0
    stability_exponent: float = 0.8

    # -- arrhythmia analyzer -------------------------------------------
    arrhythmia_window: int = 5
    arrhythmia_min_intervals: int = 4
    arrhythmia_history_size: int = 20
    bradycardia_bpm: float = 50.0
    tachycardia_bpm: float = 120.0
    extrasystole_factor: float = 0.7
    rmssd_threshold_ms: float = 50.0
    rr_variation_threshold: float = 0.2
    arrhythmia_cooldown_ms: float = 1000.0
    recency_weighted_mean: bool = False

    # -- audio feedback ------------------------------------------------
    beep_min_confidence: float = 0.7
    min_beep_interval_ms: float = 250.0

    def __post_init__(self) -> None:
        if not 0 < self.min_bpm < self.max_bpm:
            raise ValueError(
                f"Invalid BPM range: min_bpm={self.min_bpm}, max_bpm={self.max_bpm}"
            )
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        for name in ("median_window", "moving_average"):
            low = getattr(self, f"{name}_min")
            high = getattr(self, f"{name}_max")
            if low < 1 or high < low or low % 2 == 0 or high % 2 == 0:
                raise ValueError(
                    f"{name} bounds must be odd and ordered, got {low}..{high}"
                )
        for name in (
            "ema_alpha",
            "baseline_alpha",
            "motion_alpha",
            "quality_alpha",
            "bpm_alpha",
            "sample_interval_alpha",
        ):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        weights = (
            self.weight_detector,
            self.weight_shape,
            self.weight_consistency,
            self.weight_prominence,
            self.weight_template,
        )
        if any(w < 0 for w in weights) or abs(sum(weights) - 1.0) > 1e-6:
            raise ValueError(f"Validator weights must be non-negative and sum to 1, got {weights}")
        if not 0.0 < self.acceptance_threshold < 1.0:
            raise ValueError(
                f"acceptance_threshold must be in (0, 1), got {self.acceptance_threshold}"
            )
        if self.template_width < 3 or self.shape_radius < 1:
            raise ValueError("template_width must be >= 3 and shape_radius >= 1")
        if self.signal_buffer_size < max(self.template_width, self.amplitude_window):
            raise ValueError(
                "signal_buffer_size must hold at least one template window and one amplitude window"
            )
        if self.low_signal_window < 2:
            raise ValueError(f"low_signal_window must be >= 2, got {self.low_signal_window}")
        if self.peak_lookahead < 1:
            raise ValueError(f"peak_lookahead must be >= 1, got {self.peak_lookahead}")

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def min_peak_interval_ms(self) -> float:
        """Refractory period: the shortest beat-to-beat gap allowed by ``max_bpm``."""
        return 60000.0 / self.max_bpm

    @property
    def min_rr_ms(self) -> float:
        return 60000.0 / (self.max_bpm * (1.0 + self.rr_band_slack))

    @property
    def max_rr_ms(self) -> float:
        return 60000.0 / (self.min_bpm * (1.0 - self.rr_band_slack))

    @property
    def default_sample_interval_ms(self) -> float:
        return 1000.0 / self.sample_rate
