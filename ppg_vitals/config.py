"""
Engine configuration.

Every tunable used by the PPG pipeline lives on :class:`EngineConfig`.
Components take plain constructor arguments; :class:`MeasurementSession`
builds them from one config instance so a host application can tune the
whole engine in a single place.
"""

from __future__ import annotations

from dataclasses import dataclass, replace as _replace
from typing import Tuple


@dataclass(frozen=True)
class EngineConfig:
    """
    Tunables of the PPG engine.

    Parameters
    ----------
    sample_rate:
        Nominal camera frame rate in Hz.
    window_seconds:
        Length of the sliding signal window.  Buffer capacity is
        ``sample_rate × window_seconds`` (150 samples by default).
    roi_fraction:
        Side of the centred square ROI as a fraction of the shorter frame
        dimension.
    channel_order:
        ``"bgr"`` (OpenCV frames) or ``"rgb"``.
    skin_red_threshold:
        Minimum red value (0 – 255) for a pixel to count as skin.
    finger_threshold:
        Intensity above which a finger is considered to cover the lens.
    filter_method:
        ``"moving_average"`` (centred DC removal) or ``"bandpass"``.
    filter_half_window:
        Half width of the moving-average window (±5 → 11 samples).
    filter_min_samples:
        Below this many samples the filter returns its input unchanged.
    bandpass_hz:
        Pass band used when ``filter_method == "bandpass"``.
    peak_min_distance:
        Minimum number of samples between two accepted peaks.
    peak_prominence:
        Fraction of the local range a peak must rise above the local minimum.
    peak_window:
        Half width of the local min/max window used for the prominence test.
    interval_bounds:
        Accepted inter-beat interval range in seconds (30 – 150 BPM).
    min_estimate_samples:
        Samples required before a heart rate is estimated (≈ 2 s).
    quality_window:
        Number of recent samples used for the SNR estimate.
    confidence_divisor:
        BPM variance that maps to zero confidence.
    session_seconds:
        Default measurement duration.
    history_length:
        Number of live BPM points kept for the trace display.
    placeholder_fallback:
        Emit a randomised resting-range BPM (tagged as a placeholder) when a
        measurement finds no pulse, instead of an explicit zero reading.
    """

    sample_rate: float = 30.0
    window_seconds: float = 5.0
    roi_fraction: float = 0.30
    channel_order: str = "bgr"
    skin_red_threshold: float = 100.0
    finger_threshold: float = 100.0
    filter_method: str = "moving_average"
    filter_half_window: int = 5
    filter_min_samples: int = 10
    bandpass_hz: Tuple[float, float] = (0.67, 3.0)
    peak_min_distance: int = 15
    peak_prominence: float = 0.3
    peak_window: int = 10
    interval_bounds: Tuple[float, float] = (0.4, 2.0)
    min_estimate_samples: int = 60
    quality_window: int = 30
    confidence_divisor: float = 400.0
    session_seconds: float = 30.0
    history_length: int = 50
    placeholder_fallback: bool = False

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got {self.window_seconds}")
        if self.channel_order not in ("bgr", "rgb"):
            raise ValueError(f"channel_order must be 'bgr' or 'rgb', got {self.channel_order!r}")
        if self.filter_method not in ("moving_average", "bandpass"):
            raise ValueError(f"unknown filter_method {self.filter_method!r}")
        low, high = self.interval_bounds
        if not 0 < low < high:
            raise ValueError(f"invalid interval_bounds {self.interval_bounds}")

    @property
    def buffer_capacity(self) -> int:
        """Number of samples held by the sliding window."""
        return max(1, int(round(self.sample_rate * self.window_seconds)))

    def replace(self, **changes) -> "EngineConfig":
        """Return a copy with *changes* applied."""
        return _replace(self, **changes)
