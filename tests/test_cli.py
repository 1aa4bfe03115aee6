"""
Tests for the command-line runner.
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

import main as cli
from pulse_detector.synthetic import synthetic_ppg


class TestLoadSignal:

    def test_single_column(self, tmp_path):
        path = tmp_path / "signal.txt"
        np.savetxt(path, [100.0, 101.0, 102.0])
        ts, values = cli.load_signal(path, fps=20.0)
        np.testing.assert_allclose(values, [100.0, 101.0, 102.0])
        np.testing.assert_allclose(ts, [0.0, 50.0, 100.0])

    def test_timestamp_value_rows(self, tmp_path):
        path = tmp_path / "signal.csv"
        path.write_text("# timestamp_ms,value\n0,100.5\n33,101.0\n67,99.5\n")
        ts, values = cli.load_signal(path, fps=30.0)
        np.testing.assert_allclose(ts, [0.0, 33.0, 67.0])
        np.testing.assert_allclose(values, [100.5, 101.0, 99.5])


class TestMain:

    def test_synthetic_run(self, capsys):
        assert cli.main(["--duration", "10", "--seed", "1"]) == 0
        out = capsys.readouterr().out
        assert "Final BPM" in out
        assert "Arrhythmia events" in out

    def test_replay_file(self, tmp_path, capsys):
        ts, values = synthetic_ppg(bpm=66.0, duration=12.0, seed=3)
        path = tmp_path / "recording.csv"
        np.savetxt(path, np.column_stack([ts, values]), delimiter=",")
        assert cli.main(["--input", str(path)]) == 0
        assert "Final BPM" in capsys.readouterr().out

    def test_missing_file(self, tmp_path):
        assert cli.main(["--input", str(tmp_path / "missing.csv")]) == 1

    def test_invalid_config(self):
        assert cli.main(["--min-bpm", "250"]) == 1

    @pytest.mark.parametrize("flag", ["--no-harmonics", "--verbose"])
    def test_flags(self, flag):
        assert cli.main(["--duration", "3", flag]) == 0
