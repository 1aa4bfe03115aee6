"""
Pulse Detector – real-time heartbeat detection from a PPG intensity stream.
Feed one brightness sample per camera frame to :class:`HeartbeatProcessor`;
it returns BPM, confidence and peak flags, and reports RR intervals and
arrhythmia events.
"""

from .arrhythmia import ArrhythmiaAnalyzer, ArrhythmiaEvent, ArrhythmiaType, RRStatistics
from .config import DetectorConfig
from .processor import HeartbeatProcessor, HeartbeatResult, RRSnapshot

__version__ = "0.1.0"
__author__ = "pulse_detector"

__all__ = [
    "ArrhythmiaAnalyzer",
    "ArrhythmiaEvent",
    "ArrhythmiaType",
    "DetectorConfig",
    "HeartbeatProcessor",
    "HeartbeatResult",
    "RRSnapshot",
    "RRStatistics",
]
