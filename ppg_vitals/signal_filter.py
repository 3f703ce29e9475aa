"""
DC removal.

The raw red intensity is dominated by a slowly varying baseline (ambient
light, exposure drift, how hard the finger presses).  Subtracting a centred
moving average leaves the pulsatile component: a near-zero baseline with
one oscillation per heartbeat.

A Butterworth band-pass is available as an alternative for hosts that need
steeper rejection of drift and high-frequency sensor noise.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np
from scipy.signal import butter, sosfilt


def moving_average_residual(signal: np.ndarray, half_window: int = 5) -> np.ndarray:
    """
    Subtract a centred moving average from *signal*.

    The window covers ``[i - half_window, i + half_window]`` clamped to the
    signal bounds, so samples near either edge are averaged over fewer
    neighbours rather than padded.
    """
    n = len(signal)
    csum = np.concatenate(([0.0], np.cumsum(signal)))
    idx = np.arange(n)
    lo = np.maximum(idx - half_window, 0)
    hi = np.minimum(idx + half_window + 1, n)
    return signal - (csum[hi] - csum[lo]) / (hi - lo)


def build_bandpass(fs: float, band_hz: Tuple[float, float], order: int = 2) -> np.ndarray:
    """Construct a Butterworth band-pass filter (SOS form)."""
    nyq = fs / 2.0
    low = band_hz[0] / nyq
    high = band_hz[1] / nyq
    # Clamp to valid range
    low = max(1e-4, min(low, 0.999))
    high = max(low + 1e-4, min(high, 0.999))
    return butter(order, [low, high], btype="bandpass", output="sos")


class SignalFilter:
    """
    Remove the DC / ambient component of a PPG signal.

    Parameters
    ----------
    method:
        ``"moving_average"`` (default) or ``"bandpass"``.
    half_window:
        Half width of the moving-average window (±5 samples).
    min_samples:
        Signals shorter than this are returned unchanged.
    fs:
        Sampling rate in Hz, used by the band-pass method.
    band_hz:
        Pass band of the band-pass method.
    """

    def __init__(
        self,
        method: str = "moving_average",
        half_window: int = 5,
        min_samples: int = 10,
        fs: float = 30.0,
        band_hz: Tuple[float, float] = (0.67, 3.0),
    ) -> None:
        if method not in ("moving_average", "bandpass"):
            raise ValueError(f"unknown filter method {method!r}")
        self.method = method
        self.half_window = half_window
        self.min_samples = min_samples
        self._sos = build_bandpass(fs, band_hz) if method == "bandpass" else None

    def apply(self, signal: Sequence[float]) -> np.ndarray:
        """Return the AC component of *signal* (same length)."""
        x = np.asarray(signal, dtype=np.float64)
        if len(x) < self.min_samples:
            return x.copy()
        if self._sos is not None:
            return sosfilt(self._sos, x - x.mean())
        return moving_average_residual(x, self.half_window)


def remove_dc(signal: Sequence[float], half_window: int = 5, min_samples: int = 10) -> np.ndarray:
    """Convenience wrapper around the default moving-average filter."""
    return SignalFilter(half_window=half_window, min_samples=min_samples).apply(signal)
