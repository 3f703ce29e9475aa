"""
Camera collaborator.

Delivers OpenCV-compatible BGR frames from a Raspberry Pi camera (via
picamera2) or from any device or video file OpenCV can open.  Failures to
open or to keep delivering frames raise :class:`CaptureUnavailable`; retrying
is left to the caller.
"""

from __future__ import annotations

import logging
import time
from typing import Generator, Tuple, Union

import cv2
import numpy as np

from ppg_vitals.errors import CaptureUnavailable

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Try importing picamera2 (only available on Raspberry Pi OS)
# ---------------------------------------------------------------------------
try:
    from picamera2 import Picamera2
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False

MAX_NULL_FRAMES = 10


class Camera:
    """
    Frame source for the PPG engine.

    Parameters
    ----------
    source:
        OpenCV device index or path to a video file.
    resolution:
        (width, height) requested from a live device.
    fps:
        Requested frame rate of a live device.
    backend:
        ``"auto"`` (picamera2 when installed and *source* is a device index,
        OpenCV otherwise), ``"picamera2"`` or ``"opencv"``.
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        resolution: Tuple[int, int] = (640, 480),
        fps: int = 30,
        backend: str = "auto",
    ) -> None:
        if backend not in ("auto", "picamera2", "opencv"):
            raise ValueError(f"unknown camera backend {backend!r}")
        if backend == "picamera2" and not _PICAMERA2_AVAILABLE:
            raise CaptureUnavailable("picamera2 backend requested but not installed")

        self.source = source
        self.resolution = resolution
        self.fps = fps
        if backend == "auto":
            backend = "picamera2" if _PICAMERA2_AVAILABLE and isinstance(source, int) else "opencv"
        self.backend = backend

        self._cam: "Picamera2 | cv2.VideoCapture | None" = None
        self._frames_read = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._cam is not None

    @property
    def is_file(self) -> bool:
        return isinstance(self.source, str)

    def open(self) -> None:
        """Start the camera; raise :class:`CaptureUnavailable` on failure."""
        if self._cam is not None:
            return
        self._frames_read = 0
        if self.backend == "picamera2":
            self._open_picamera2()
        else:
            self._open_opencv()
        logger.info(
            "Camera opened – backend=%s source=%s resolution=%s fps=%s",
            self.backend, self.source, self.resolution, self.fps,
        )

    def close(self) -> None:
        """Stop and release the camera."""
        if self._cam is None:
            return
        if self.backend == "picamera2":
            self._cam.stop()
            self._cam.close()
        else:
            self._cam.release()
        self._cam = None
        logger.info("Camera closed.")

    def __enter__(self) -> "Camera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> np.ndarray | None:
        """Capture one BGR frame, or *None* if this read failed."""
        if self._cam is None:
            raise CaptureUnavailable("Camera is not open.  Call open() first.")
        if self.backend == "picamera2":
            frame = self._read_picamera2()
        else:
            frame = self._read_opencv()
        if frame is not None:
            self._frames_read += 1
        return frame

    def clock(self) -> float:
        """
        Timestamp of the current frame in seconds.

        Live sources use :func:`time.monotonic`.  Video files use their
        presentation time, so a recording replays faster than real time
        without distorting the pulse.  Pass this as the session clock.
        """
        if self.is_file:
            return self._frames_read / float(self.fps)
        return time.monotonic()

    def frames(self) -> Generator[np.ndarray, None, None]:
        """
        Yield frames until the camera is closed or a video file ends.

        A live device returning ``MAX_NULL_FRAMES`` failed reads in a row
        raises :class:`CaptureUnavailable`.
        """
        null_streak = 0
        while self._cam is not None:
            frame = self.read_frame()
            if frame is None:
                if self.is_file:
                    return
                null_streak += 1
                if null_streak >= MAX_NULL_FRAMES:
                    raise CaptureUnavailable(
                        f"Camera returned {MAX_NULL_FRAMES} consecutive empty frames"
                    )
                continue
            null_streak = 0
            yield frame

    # ------------------------------------------------------------------
    # Private helpers – picamera2
    # ------------------------------------------------------------------

    def _open_picamera2(self) -> None:
        try:
            cam = Picamera2()
            w, h = self.resolution
            config = cam.create_video_configuration(
                main={"size": (w, h), "format": "RGB888"},
                buffer_count=4,
            )
            cam.configure(config)
            frame_duration = int(1_000_000 / self.fps)   # microseconds
            cam.set_controls({"FrameDurationLimits": (frame_duration, frame_duration)})
            cam.start()
        except Exception as exc:                         # noqa: BLE001
            raise CaptureUnavailable(f"picamera2 failed to start: {exc}") from exc
        # Let auto-exposure settle before the first real frame.
        for _ in range(8):
            cam.capture_array("main")
        self._cam = cam

    def _read_picamera2(self) -> np.ndarray | None:
        frame = self._cam.capture_array("main")
        if frame is None:
            logger.warning("capture_array returned None.")
            return None
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = frame[:, :, :3]
        return cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)

    # ------------------------------------------------------------------
    # Private helpers – OpenCV
    # ------------------------------------------------------------------

    def _open_opencv(self) -> None:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            raise CaptureUnavailable(f"Cannot open video source {self.source!r}")
        if self.is_file:
            file_fps = cap.get(cv2.CAP_PROP_FPS)
            if file_fps and file_fps > 0:
                self.fps = float(file_fps)
        else:
            w, h = self.resolution
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
            cap.set(cv2.CAP_PROP_FPS, self.fps)
        self._cam = cap

    def _read_opencv(self) -> np.ndarray | None:
        ok, frame = self._cam.read()
        if not ok:
            if not self.is_file:
                logger.warning("VideoCapture.read() returned False.")
            return None
        return frame
