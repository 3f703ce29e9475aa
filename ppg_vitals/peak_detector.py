"""
Heartbeat peak detection on the DC-free PPG signal.

A sample is a candidate peak when it is strictly greater than both
neighbours.  A candidate is accepted when it is far enough from the last
accepted peak and rises clearly above its surroundings:

    value > local_min + prominence × (local_max − local_min)

where the local range is taken over ``±window`` samples.  Candidates are
scanned in order and the first acceptable one wins; a stronger peak later
inside the exclusion distance does not replace it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
from scipy.ndimage import maximum_filter1d, minimum_filter1d
from scipy.signal import argrelmax


@dataclass(frozen=True)
class Peak:
    """An accepted heartbeat peak."""

    index: int
    timestamp: float
    value: float


class PeakDetector:
    """
    Parameters
    ----------
    min_distance:
        Minimum number of samples between accepted peaks (15 ≈ 0.5 s at 30 Hz).
    prominence:
        Fraction of the local range the peak must exceed above the local min.
    window:
        Half width of the local min/max window.
    """

    def __init__(self, min_distance: int = 15, prominence: float = 0.3, window: int = 10) -> None:
        self.min_distance = min_distance
        self.prominence = prominence
        self.window = window

    def detect(self, signal: Sequence[float]) -> List[int]:
        """Return accepted peak indices in increasing order."""
        x = np.asarray(signal, dtype=np.float64)
        if len(x) < 3:
            return []

        candidates = argrelmax(x)[0]
        if len(candidates) == 0:
            return []

        # "nearest" padding makes each window equal to the clamped one
        size = 2 * self.window + 1
        local_max = maximum_filter1d(x, size=size, mode="nearest")
        local_min = minimum_filter1d(x, size=size, mode="nearest")
        threshold = local_min + self.prominence * (local_max - local_min)

        peaks: List[int] = []
        for i in candidates:
            if peaks and i - peaks[-1] < self.min_distance:
                continue
            if x[i] > threshold[i]:
                peaks.append(int(i))
        return peaks

    def find(self, signal: Sequence[float], timestamps: Sequence[float]) -> List[Peak]:
        """Like :meth:`detect`, but return :class:`Peak` records."""
        x = np.asarray(signal, dtype=np.float64)
        return [Peak(i, float(timestamps[i]), float(x[i])) for i in self.detect(x)]


def detect_peaks(
    signal: Sequence[float],
    min_distance: int = 15,
    prominence: float = 0.3,
    window: int = 10,
) -> List[int]:
    """Functional shortcut for :meth:`PeakDetector.detect`."""
    return PeakDetector(min_distance, prominence, window).detect(signal)
