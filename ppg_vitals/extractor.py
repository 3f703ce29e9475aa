"""
Frame → red-intensity extraction.

When a fingertip covers the lens the light reaching the sensor has passed
through perfused tissue, so the red channel rises and falls with each
heartbeat.  Only a centred square region of interest is examined, and
only pixels that look like skin (red-dominant and bright enough) are
averaged; background and shadow pixels are ignored.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class FrameIntensityExtractor:
    """
    Compute the mean red value of skin-like pixels in the frame centre.

    Parameters
    ----------
    roi_fraction:
        Side of the square ROI as a fraction of the shorter frame
        dimension (default 0.30).
    red_threshold:
        Minimum red value (0 – 255) for a pixel to count as skin.
    channel_order:
        ``"bgr"`` for OpenCV frames, ``"rgb"`` otherwise.
    """

    def __init__(
        self,
        roi_fraction: float = 0.30,
        red_threshold: float = 100.0,
        channel_order: str = "bgr",
    ) -> None:
        if channel_order not in ("bgr", "rgb"):
            raise ValueError(f"channel_order must be 'bgr' or 'rgb', got {channel_order!r}")
        self.roi_fraction = roi_fraction
        self.red_threshold = red_threshold
        self.channel_order = channel_order
        self._red, self._green, self._blue = (2, 1, 0) if channel_order == "bgr" else (0, 1, 2)

    def roi(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """Return the ``(x, y, w, h)`` ROI square for a frame of the given size."""
        side = int(min(width, height) * self.roi_fraction)
        x = (width - side) // 2
        y = (height - side) // 2
        return x, y, side, side

    def extract(self, frame: Optional[np.ndarray]) -> float:
        """
        Return the red intensity of *frame*, or ``0.0`` when nothing usable.

        Parameters
        ----------
        frame:
            Image array (H × W × 3, uint8) in :attr:`channel_order`.
        """
        if frame is None or frame.ndim != 3 or frame.shape[2] < 3:
            return 0.0

        h, w = frame.shape[:2]
        x, y, side, _ = self.roi(w, h)
        if side < 1:
            logger.debug("Frame %dx%d too small for ROI.", w, h)
            return 0.0

        patch = frame[y:y + side, x:x + side]
        red = patch[:, :, self._red].astype(np.float64)
        green = patch[:, :, self._green].astype(np.float64)
        blue = patch[:, :, self._blue].astype(np.float64)

        skin = (red > green) & (red > blue) & (red > self.red_threshold)
        count = int(np.count_nonzero(skin))
        if count == 0:
            return 0.0
        return float(red[skin].sum() / count)
