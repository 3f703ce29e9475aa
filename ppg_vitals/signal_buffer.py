"""
Sliding window of PPG samples.

Each sample is stored as one immutable ``(intensity, timestamp)`` record, so
the intensity and timestamp views always have the same length and index
correspondence.  Once the window is full the oldest sample is evicted.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Tuple

import numpy as np


@dataclass(frozen=True)
class Sample:
    """One red-intensity reading and its monotonic timestamp (seconds)."""

    intensity: float
    timestamp: float


class SignalBuffer:
    """
    Fixed-capacity FIFO of :class:`Sample`.

    Parameters
    ----------
    capacity:
        Maximum number of samples kept (default 150 = 30 Hz × 5 s).
    """

    def __init__(self, capacity: int = 150) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._samples: Deque[Sample] = deque(maxlen=capacity)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_sample(self, intensity: float, timestamp: float) -> Sample:
        """Append a sample, evicting the oldest one when full."""
        sample = Sample(float(intensity), float(timestamp))
        self._samples.append(sample)
        return sample

    def reset(self) -> None:
        """Drop every sample."""
        self._samples.clear()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen

    @property
    def fill_ratio(self) -> float:
        """How full the window is (0 – 1)."""
        return len(self._samples) / self._samples.maxlen

    def samples(self) -> Tuple[Sample, ...]:
        """Snapshot of the buffered samples, oldest first."""
        return tuple(self._samples)

    def samples_since(self, t: float) -> Tuple[Sample, ...]:
        """Samples whose timestamp is at or after *t*."""
        return tuple(s for s in self._samples if s.timestamp >= t)

    def intensities(self) -> np.ndarray:
        return np.fromiter((s.intensity for s in self._samples), dtype=np.float64,
                           count=len(self._samples))

    def timestamps(self) -> np.ndarray:
        return np.fromiter((s.timestamp for s in self._samples), dtype=np.float64,
                           count=len(self._samples))
