"""
Per-session detector state shared across the pipeline stages.

Each stage owns its own buffers; the scalars that several stages read or
write (baseline, adaptive threshold, quality, peak timestamps, ...) live
here in one object that the session passes to every stage.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from .config import DetectorConfig


@dataclass
class DetectorState:
    """Mutable scalars of one monitoring session (see :class:`HeartbeatProcessor`)."""

    sample_interval_ms: float
    adaptive_threshold: float
    quality_history: Deque[float]

    baseline: float = 0.0
    motion_score: float = 0.0
    quality_score: float = 0.0
    quality_unstable: bool = True
    snr: float = 0.0

    smoothed_bpm: float = 0.0
    bpm_estimate: Optional[float] = None   # None until enough BPM history exists
    bpm_stability: float = 0.0

    last_peak_time: Optional[float] = None
    previous_peak_time: Optional[float] = None
    last_confidence: float = 0.0

    low_signal_count: int = 0
    warmup_start: Optional[float] = None
    last_timestamp: Optional[float] = None
    sample_index: int = 0

    @classmethod
    def initial(cls, config: DetectorConfig) -> "DetectorState":
        return cls(
            sample_interval_ms=config.default_sample_interval_ms,
            adaptive_threshold=config.signal_threshold,
            quality_history=deque(maxlen=config.quality_history_size),
        )

    @property
    def sample_rate(self) -> float:
        """Measured frame rate in Hz."""
        return 1000.0 / self.sample_interval_ms

    def in_warmup(self, now_ms: float, warmup_ms: float) -> bool:
        if self.warmup_start is None:
            return True
        return now_ms - self.warmup_start < warmup_ms

    def clear_peaks(self) -> None:
        """Forget peak timing and BPM-derived values (signal buffers untouched)."""
        self.last_peak_time = None
        self.previous_peak_time = None
        self.last_confidence = 0.0
        self.smoothed_bpm = 0.0
        self.bpm_estimate = None
        self.bpm_stability = 0.0
