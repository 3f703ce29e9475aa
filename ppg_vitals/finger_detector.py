"""
Finger-on-lens detector.

When a fingertip covers the camera (with the flash or ambient light shining
through it) the skin-like pixels of the ROI are bright red, so the extracted
intensity sits well above 100 on the 0 – 255 scale.  An uncovered lens, a
dark room or a finger that slipped off yields few or no skin-like pixels and
the intensity drops towards 0.

The check runs on every sample rather than on the window so placement and
removal are noticed immediately.
"""

from __future__ import annotations


class FingerDetector:
    """
    Threshold detector: is the camera lens covered by a finger?

    Parameters
    ----------
    threshold:
        Minimum red intensity (exclusive) for a finger to be present.
        Default: 100, the same scale as the extractor's skin test.
    """

    def __init__(self, threshold: float = 100.0) -> None:
        self.threshold = threshold

    def is_finger(self, intensity: float) -> bool:
        """Return *True* if *intensity* looks like a covered lens."""
        return intensity > self.threshold
