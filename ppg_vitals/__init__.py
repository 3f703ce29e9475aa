"""
PPG Vitals — camera-based heart-rate estimation.
Place your fingertip on the camera lens; the engine extracts the
photoplethysmography (PPG) signal from the red channel, detects individual
beats and reports BPM, a confidence score and a signal-quality level.
"""

from ppg_vitals.config import EngineConfig
from ppg_vitals.errors import CaptureUnavailable, SessionError
from ppg_vitals.heart_rate import HeartRateResult
from ppg_vitals.session import (
    MeasurementSession,
    ReadingStatus,
    SessionHandle,
    SessionState,
    VitalReading,
)
from ppg_vitals.signal_quality import QualityLevel, SignalQuality

__version__ = "0.1.0"

__all__ = [
    "CaptureUnavailable",
    "EngineConfig",
    "HeartRateResult",
    "MeasurementSession",
    "QualityLevel",
    "ReadingStatus",
    "SessionError",
    "SessionHandle",
    "SessionState",
    "SignalQuality",
    "VitalReading",
]
