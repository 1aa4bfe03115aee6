"""
Synthetic PPG-like test signals.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
from scipy.signal import sawtooth


def synthetic_ppg(
    bpm: float = 72.0,
    duration: float = 30.0,
    fps: float = 30.0,
    amplitude: float = 2.0,
    baseline: float = 100.0,
    noise: float = 0.05,
    rise_fraction: float = 0.3,
    seed: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate a repeating triangular pulse with additive Gaussian noise.

    Parameters
    ----------
    bpm:
        Pulse rate of the waveform.
    duration:
        Signal length in seconds.
    fps:
        Sampling rate in Hz.
    amplitude:
        Peak-to-peak height of the pulse.
    baseline:
        Constant offset (camera brightness level).
    noise:
        Standard deviation of the added noise.
    rise_fraction:
        Fraction of each period spent rising (0 < x <= 1).
    seed:
        Seed for the noise generator.

    Returns
    -------
    timestamps_ms, values
        Two float arrays of equal length.
    """
    if bpm <= 0 or fps <= 0 or duration < 0:
        raise ValueError("bpm and fps must be positive and duration non-negative")
    if not 0.0 < rise_fraction <= 1.0:
        raise ValueError(f"rise_fraction must be in (0, 1], got {rise_fraction}")

    n = int(round(duration * fps))
    t = np.arange(n, dtype=np.float64) / fps
    wave = sawtooth(2.0 * np.pi * (bpm / 60.0) * t, width=rise_fraction)
    values = baseline + 0.5 * amplitude * wave
    if noise > 0:
        rng = np.random.default_rng(seed)
        values = values + rng.normal(0.0, noise, n)
    return t * 1000.0, values
