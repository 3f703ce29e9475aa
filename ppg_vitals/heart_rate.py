"""
Heart-rate estimation from peak timing.

Algorithm
---------
1. Remove the DC component of the buffered intensities.
2. Detect heartbeat peaks.
3. Convert consecutive peak timestamps into inter-beat intervals and keep
   only physiologically plausible ones (0.4 – 2.0 s, i.e. 30 – 150 BPM).
4. Average the instantaneous rates; the spread of the rates gives the
   confidence: ``clip(1 - variance / 400, 0, 1)``.

Too little data or no usable pulse is not an error: the result simply has
``bpm == 0`` and ``confidence == 0`` and records why in ``reason``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from ppg_vitals.peak_detector import Peak, PeakDetector
from ppg_vitals.signal_buffer import SignalBuffer
from ppg_vitals.signal_filter import SignalFilter

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient_data"
NO_PULSE = "no_pulse"


def _frozen(values: np.ndarray) -> np.ndarray:
    values = np.array(values, dtype=np.float64)
    values.setflags(write=False)
    return values


def round_half_up(value: float) -> int:
    """Round to the nearest integer with exact halves going up (72.5 -> 73)."""
    return int(np.floor(value + 0.5))


@dataclass(frozen=True)
class HeartRateResult:
    """Snapshot of one heart-rate estimation."""

    bpm: int
    confidence: float
    filtered_signal: np.ndarray = field(default_factory=lambda: _frozen(np.empty(0)),
                                        compare=False, repr=False)
    peaks: Tuple[Peak, ...] = ()
    reason: Optional[str] = None


class HeartRateEstimator:
    """
    Stateless BPM estimator over a :class:`SignalBuffer`.

    Parameters
    ----------
    signal_filter:
        DC-removal filter (default: ±5 sample moving average).
    peak_detector:
        Peak detector (default: 15 samples apart, 30 % local prominence).
    min_samples:
        Samples required before estimating (default 60 ≈ 2 s at 30 Hz).
    interval_bounds:
        Accepted inter-beat interval range in seconds.
    confidence_divisor:
        BPM variance that maps to zero confidence.
    """

    def __init__(
        self,
        signal_filter: SignalFilter | None = None,
        peak_detector: PeakDetector | None = None,
        min_samples: int = 60,
        interval_bounds: Tuple[float, float] = (0.4, 2.0),
        confidence_divisor: float = 400.0,
    ) -> None:
        self.signal_filter = signal_filter if signal_filter is not None else SignalFilter()
        self.peak_detector = peak_detector if peak_detector is not None else PeakDetector()
        self.min_samples = min_samples
        self.interval_bounds = interval_bounds
        self.confidence_divisor = confidence_divisor

    def estimate(self, buffer: SignalBuffer) -> HeartRateResult:
        """Return a fresh :class:`HeartRateResult` for the current buffer."""
        samples = buffer.samples()
        if len(samples) < self.min_samples:
            return HeartRateResult(0, 0.0, reason=INSUFFICIENT_DATA)

        intensities = np.array([s.intensity for s in samples], dtype=np.float64)
        timestamps = np.array([s.timestamp for s in samples], dtype=np.float64)

        filtered = _frozen(self.signal_filter.apply(intensities))
        peaks = tuple(self.peak_detector.find(filtered, timestamps))

        if len(peaks) < 2:
            return HeartRateResult(0, 0.0, filtered, peaks, reason=NO_PULSE)

        intervals = np.diff([p.timestamp for p in peaks])
        low, high = self.interval_bounds
        valid = intervals[(intervals >= low) & (intervals <= high)]
        if len(valid) == 0:
            logger.debug("All %d intervals outside %.1f-%.1f s.", len(intervals), low, high)
            return HeartRateResult(0, 0.0, filtered, peaks, reason=NO_PULSE)

        bpms = 60.0 / valid
        avg_bpm = float(np.mean(bpms))
        variance = float(np.mean((bpms - avg_bpm) ** 2))
        confidence = float(np.clip(1.0 - variance / self.confidence_divisor, 0.0, 1.0))

        return HeartRateResult(round_half_up(avg_bpm), confidence, filtered, peaks)
