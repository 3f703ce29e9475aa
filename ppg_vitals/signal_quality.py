"""
Signal quality classification.

The SNR over the most recent window (``mean / std`` of the raw intensity)
is mapped to a discrete level with a short hint for the user.  A steady,
well-lit fingertip gives a high mean with small fluctuations; a lens that is
only partly covered lets ambient light flicker in and the SNR collapses.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import numpy as np


class QualityLevel(str, Enum):
    POOR = "poor"
    FAIR = "fair"
    GOOD = "good"
    EXCELLENT = "excellent"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    QualityLevel.POOR: 0,
    QualityLevel.FAIR: 1,
    QualityLevel.GOOD: 2,
    QualityLevel.EXCELLENT: 3,
}

MESSAGES = {
    QualityLevel.EXCELLENT: "Excellent signal - keep still",
    QualityLevel.GOOD: "Good signal",
    QualityLevel.FAIR: "Fair signal - press a little firmer and stay still",
    QualityLevel.POOR: "Poor signal - cover the camera lens completely with your fingertip",
}

INSUFFICIENT_DATA_MESSAGE = "Insufficient data"


@dataclass(frozen=True)
class SignalQuality:
    level: QualityLevel
    message: str
    snr: float = 0.0


def compute_snr(values: Sequence[float]) -> float:
    """``mean / std``; 0 for a non-positive mean, inf for a flat positive signal."""
    x = np.asarray(values, dtype=np.float64)
    if len(x) == 0:
        return 0.0
    mean = float(x.mean())
    if mean <= 0:
        return 0.0
    std = math.sqrt(float(x.var()))
    if std == 0.0:
        return math.inf
    return mean / std


class SignalQualityClassifier:
    """
    Parameters
    ----------
    window:
        Number of recent samples examined (default 30 ≈ 1 s).
    thresholds:
        SNR lower bounds (exclusive) for excellent, good and fair.
    """

    def __init__(self, window: int = 30, thresholds: Sequence[float] = (10.0, 5.0, 2.0)) -> None:
        self.window = window
        self.excellent, self.good, self.fair = thresholds

    def level_for(self, snr: float) -> QualityLevel:
        if snr > self.excellent:
            return QualityLevel.EXCELLENT
        if snr > self.good:
            return QualityLevel.GOOD
        if snr > self.fair:
            return QualityLevel.FAIR
        return QualityLevel.POOR

    def classify(self, intensities: Sequence[float]) -> SignalQuality:
        """Classify the last :attr:`window` values of *intensities*."""
        if len(intensities) < self.window:
            return SignalQuality(QualityLevel.POOR, INSUFFICIENT_DATA_MESSAGE)
        recent = np.asarray(intensities, dtype=np.float64)[-self.window:]
        snr = compute_snr(recent)
        level = self.level_for(snr)
        return SignalQuality(level, MESSAGES[level], snr)
