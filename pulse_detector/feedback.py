"""
Audio feedback hook.

The detector never renders sound itself; it calls ``play_beep`` on whatever
object the caller supplies.  :class:`BeepScheduler` decides *whether* a beat
deserves a beep.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class AudioFeedback(Protocol):
    def play_beep(self, intensity: float) -> None:
        ...


class BeepScheduler:
    """
    Rate-limits and gates beeps for accepted peaks.

    Parameters
    ----------
    feedback:
        Collaborator receiving ``play_beep(intensity)``; ``None`` disables
        beeping entirely.
    min_confidence:
        Peaks below this confidence stay silent.
    min_interval_ms:
        Minimum spacing between two beeps.
    """

    def __init__(
        self,
        feedback: Optional[AudioFeedback] = None,
        min_confidence: float = 0.7,
        min_interval_ms: float = 250.0,
    ) -> None:
        self.feedback = feedback
        self.min_confidence = min_confidence
        self.min_interval_ms = min_interval_ms
        self._last_beep: Optional[float] = None

    def maybe_beep(self, timestamp: float, confidence: float, in_warmup: bool) -> bool:
        """Beep for a peak at *timestamp* if allowed; returns whether a beep was requested."""
        if self.feedback is None or in_warmup or confidence < self.min_confidence:
            return False
        if self._last_beep is not None and timestamp - self._last_beep < self.min_interval_ms:
            return False
        self._last_beep = timestamp
        intensity = min(max(confidence, 0.0), 1.0)
        try:
            self.feedback.play_beep(intensity)
        except Exception as e:
            logger.warning("Audio feedback failed: %s", e)
        return True

    def reset(self) -> None:
        self._last_beep = None
