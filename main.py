#!/usr/bin/env python3
"""
Pulse Detector – command-line runner.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --input PATH         Replay a recorded signal (one value per line, or
                         ``timestamp_ms,value`` rows)
    --bpm FLOAT          Rate of the synthetic signal (default: 72)
    --duration FLOAT     Length of the synthetic signal in seconds (default: 30)
    --noise FLOAT        Noise level of the synthetic signal (default: 0.05)
    --seed INT           Noise seed of the synthetic signal
    --fps FLOAT          Sampling rate (default: 30)
    --min-bpm FLOAT      Lowest accepted heart rate (default: 40)
    --max-bpm FLOAT      Highest accepted heart rate (default: 200)
    --no-harmonics       Disable harmonic enhancement
    --verbose            Log every peak decision
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Tuple

import numpy as np

from pulse_detector import DetectorConfig, HeartbeatProcessor
from pulse_detector.arrhythmia import ArrhythmiaEvent
from pulse_detector.synthetic import synthetic_ppg

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pulse_detector")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Heartbeat detection from a PPG intensity signal",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--input", type=Path, default=None,
                        help="Signal file: one value per line or timestamp_ms,value rows")
    parser.add_argument("--bpm", type=float, default=72.0,
                        help="Rate of the synthetic signal")
    parser.add_argument("--duration", type=float, default=30.0,
                        help="Length of the synthetic signal in seconds")
    parser.add_argument("--noise", type=float, default=0.05,
                        help="Noise standard deviation of the synthetic signal")
    parser.add_argument("--seed", type=int, default=None,
                        help="Noise seed of the synthetic signal")
    parser.add_argument("--fps", type=float, default=30.0,
                        help="Sampling rate of the signal")
    parser.add_argument("--min-bpm", type=float, default=40.0,
                        help="Lowest accepted heart rate")
    parser.add_argument("--max-bpm", type=float, default=200.0,
                        help="Highest accepted heart rate")
    parser.add_argument("--no-harmonics", action="store_true",
                        help="Disable harmonic enhancement")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable DEBUG logging")
    return parser.parse_args(argv)


def load_signal(path: Path, fps: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Read a recorded signal.

    A single column is taken as samples at ``fps``; with two or more columns
    the first is the timestamp in milliseconds and the second the sample.
    """
    data = np.loadtxt(path, delimiter=",", ndmin=2, dtype=np.float64)
    if data.shape[0] == 0:
        raise ValueError(f"{path} contains no samples")
    if data.shape[1] == 1:
        values = data[:, 0]
        timestamps = np.arange(values.size, dtype=np.float64) * 1000.0 / fps
    else:
        timestamps, values = data[:, 0], data[:, 1]
    return timestamps, values


def build_config(args: argparse.Namespace) -> DetectorConfig:
    return dataclasses.replace(
        DetectorConfig(),
        sample_rate=args.fps,
        min_bpm=args.min_bpm,
        max_bpm=args.max_bpm,
        harmonic_enhancement=not args.no_harmonics,
    )


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    if args.input is not None:
        try:
            timestamps, values = load_signal(args.input, args.fps)
        except (OSError, ValueError) as e:
            logger.error("Cannot read %s: %s", args.input, e)
            return 1
        logger.info("Replaying %d samples from %s", values.size, args.input)
    else:
        try:
            timestamps, values = synthetic_ppg(
                bpm=args.bpm, duration=args.duration, fps=args.fps,
                noise=args.noise, seed=args.seed,
            )
        except ValueError as e:
            logger.error("Cannot generate synthetic signal: %s", e)
            return 1
        logger.info("Synthetic signal: %.0f BPM, %.0f s at %.0f fps", args.bpm, args.duration, args.fps)

    def on_arrhythmia(event: ArrhythmiaEvent) -> None:
        print(f"[{event.timestamp / 1000.0:7.2f}s] {event.type.value}  rr={event.rr:.0f} ms  bpm={event.bpm:.0f}")

    processor = HeartbeatProcessor(config, on_arrhythmia=on_arrhythmia)
    log_interval = max(1, int(round(args.fps)))  # ~1 second of signal
    peaks = 0
    result = None

    for i, (ts, value) in enumerate(zip(timestamps, values)):
        result = processor.process_sample(float(value), float(ts))
        peaks += result.is_peak
        if i % log_interval == 0:
            if result.bpm > 0:
                print(f"[{ts / 1000.0:7.2f}s] BPM={result.bpm}  conf={result.confidence:.2f}  "
                      f"stability={result.bpm_stability_score:.2f}  motion={result.is_motion_detected}")
            else:
                print(f"[{ts / 1000.0:7.2f}s] Waiting for signal…")

    print_summary(processor, result, peaks)
    return 0


def print_summary(processor: HeartbeatProcessor, result, peaks: int) -> None:
    print("-" * 60)
    if result is None:
        print("No samples processed.")
        return
    print(f"Final BPM: {result.bpm}  stability={result.bpm_stability_score:.2f}  peaks={peaks}")
    stats = processor.rr_statistics
    if stats is not None:
        print(f"RR: mean={stats.mean_rr:.0f} ms  SDNN={stats.sdnn:.1f} ms  "
              f"RMSSD={stats.rmssd:.1f} ms  pNN50={stats.pnn50:.0%}")
    counts = processor.arrhythmia_counts
    print("Arrhythmia events: " + ", ".join(f"{k.value}={v}" for k, v in counts.items()))


def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
