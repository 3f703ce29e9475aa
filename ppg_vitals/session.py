"""
Measurement session: the state machine that drives the PPG pipeline.

States
------
::

    IDLE ─acquire_camera()─▶ CAMERA_ACQUIRING ─first frame─▶ FINGER_NOT_DETECTED
                                                              ▲        │
                                                       finger │        │ finger
                                                       lost   │        ▼ placed
                                                             READY_TO_MEASURE
                                                                   │ start_session()
                                                                   ▼
                                         COMPLETE ◀─deadline / complete_now()─ MEASURING

``reset()`` returns to ``IDLE`` from any state.

Frames are pushed synchronously through :meth:`MeasurementSession.add_frame`
by whatever loop the host uses (camera callback, timer, polling thread).  A
frame that arrives while the previous one is still being processed is
dropped rather than queued.  Everything handed out to readers (live status,
estimates, readings) is an immutable snapshot.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional, Tuple

import numpy as np

from ppg_vitals.config import EngineConfig
from ppg_vitals.errors import CaptureUnavailable, SessionError
from ppg_vitals.extractor import FrameIntensityExtractor
from ppg_vitals.finger_detector import FingerDetector
from ppg_vitals.heart_rate import HeartRateEstimator, HeartRateResult
from ppg_vitals.peak_detector import PeakDetector
from ppg_vitals.signal_buffer import SignalBuffer
from ppg_vitals.signal_filter import SignalFilter
from ppg_vitals.signal_quality import QualityLevel, SignalQuality, SignalQualityClassifier

logger = logging.getLogger(__name__)

# Resting range used by the legacy placeholder fallback.
PLACEHOLDER_BPM_RANGE = (70, 80)


class SessionState(str, Enum):
    IDLE = "idle"
    CAMERA_ACQUIRING = "camera_acquiring"
    FINGER_NOT_DETECTED = "finger_not_detected"
    READY_TO_MEASURE = "ready_to_measure"
    MEASURING = "measuring"
    COMPLETE = "complete"


class ReadingStatus(str, Enum):
    MEASURED = "measured"
    NO_PULSE = "no_pulse"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class VitalReading:
    """Final result of one measurement, handed to the reporting layer."""

    heart_rate_bpm: int
    confidence: float
    timestamp_utc: datetime
    measurement_duration_seconds: float
    status: ReadingStatus = ReadingStatus.MEASURED
    quality: QualityLevel = QualityLevel.POOR

    @property
    def is_reliable(self) -> bool:
        """Only readings backed by detected beats are reliable."""
        return self.status is ReadingStatus.MEASURED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "heart_rate_bpm": self.heart_rate_bpm,
            "confidence": self.confidence,
            "timestamp_utc": self.timestamp_utc.isoformat(),
            "measurement_duration_seconds": self.measurement_duration_seconds,
            "status": self.status.value,
            "quality": self.quality.value,
        }

    def share_message(self) -> str:
        """Text a patient can send to a doctor or assistant."""
        if self.status is ReadingStatus.NO_PULSE:
            return "I tried to measure my heart rate but no pulse could be detected"
        message = f"I measured my heart rate and it's {self.heart_rate_bpm} bpm"
        if not self.is_reliable:
            message += " (estimated, low confidence)"
        return message


@dataclass(frozen=True)
class LiveStatus:
    """Snapshot published after every sample while measuring."""

    bpm: int
    confidence: float
    quality: SignalQuality
    finger_present: bool
    remaining_seconds: float
    progress: float


class SessionHandle:
    """
    Caller-side handle of one measurement.

    The handle goes stale as soon as its measurement completes, is reset,
    or is replaced by a new one.
    """

    def __init__(
        self,
        session: "MeasurementSession",
        generation: int,
        duration_seconds: float,
        started_at: float,
    ) -> None:
        self._session = session
        self._generation = generation
        self.session_id = uuid.uuid4().hex
        self.duration_seconds = duration_seconds
        self.started_at = started_at

    @property
    def active(self) -> bool:
        return (self._session._generation == self._generation
                and self._session.state is SessionState.MEASURING)

    @property
    def reading(self) -> Optional[VitalReading]:
        if self._session._generation != self._generation:
            return None
        return self._session.reading

    def remaining_seconds(self, now: float | None = None) -> float:
        if not self.active:
            return 0.0
        return self._session.remaining_seconds(now)

    def cancel(self) -> None:
        """Abort the measurement if it is still running."""
        if self.active:
            self._session.reset()

    def __repr__(self) -> str:
        return (f"SessionHandle(id={self.session_id[:8]}, "
                f"duration={self.duration_seconds}, active={self.active})")


class MeasurementSession:
    """
    Owns the signal buffer and drives one measurement at a time.

    Parameters
    ----------
    config:
        Engine tunables; defaults to :class:`EngineConfig`.
    clock:
        Monotonic time source in seconds.  Timestamps passed to
        :meth:`add_frame` / :meth:`add_sample` must come from the same
        clock.  Use :meth:`Camera.clock` when replaying a video file.
    camera:
        Optional camera collaborator with ``open()`` / ``close()``.  It is
        opened by :meth:`acquire_camera` and released by :meth:`reset`.
    rng:
        Random generator for the placeholder fallback.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        camera: Any = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig()
        cfg = self.config
        self._clock = clock
        self._camera = camera
        self._rng = rng if rng is not None else np.random.default_rng()

        self.extractor = FrameIntensityExtractor(
            roi_fraction=cfg.roi_fraction,
            red_threshold=cfg.skin_red_threshold,
            channel_order=cfg.channel_order,
        )
        self.finger_detector = FingerDetector(threshold=cfg.finger_threshold)
        self.estimator = HeartRateEstimator(
            signal_filter=SignalFilter(
                method=cfg.filter_method,
                half_window=cfg.filter_half_window,
                min_samples=cfg.filter_min_samples,
                fs=cfg.sample_rate,
                band_hz=cfg.bandpass_hz,
            ),
            peak_detector=PeakDetector(
                min_distance=cfg.peak_min_distance,
                prominence=cfg.peak_prominence,
                window=cfg.peak_window,
            ),
            min_samples=cfg.min_estimate_samples,
            interval_bounds=cfg.interval_bounds,
            confidence_divisor=cfg.confidence_divisor,
        )
        self.quality_classifier = SignalQualityClassifier(window=cfg.quality_window)
        self._buffer = SignalBuffer(cfg.buffer_capacity)

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._generation = 0
        self._finger_present = False
        self._last_intensity = 0.0
        self._started_at: Optional[float] = None
        self._duration = cfg.session_seconds
        self._live: Optional[LiveStatus] = None
        self._reading: Optional[VitalReading] = None
        self._history: Deque[Tuple[float, int]] = deque(maxlen=cfg.history_length)

        self.dropped_frames = 0
        self.capture_error: Optional[CaptureUnavailable] = None

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def buffer(self) -> SignalBuffer:
        return self._buffer

    @property
    def live_status(self) -> Optional[LiveStatus]:
        return self._live

    @property
    def reading(self) -> Optional[VitalReading]:
        return self._reading

    @property
    def history(self) -> Tuple[Tuple[float, int], ...]:
        """Recent ``(timestamp, bpm)`` points of the live estimate."""
        return tuple(self._history)

    @property
    def last_intensity(self) -> float:
        return self._last_intensity

    def is_finger_present(self) -> bool:
        return self._finger_present

    def current_estimate(self) -> HeartRateResult:
        """Heart rate of the current buffer; does not modify anything."""
        with self._lock:
            return self.estimator.estimate(self._buffer)

    def current_quality(self) -> SignalQuality:
        with self._lock:
            return self.quality_classifier.classify(self._buffer.intensities())

    def remaining_seconds(self, now: float | None = None) -> float:
        if self._state is not SessionState.MEASURING or self._started_at is None:
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self._duration - (now - self._started_at))

    def progress(self, now: float | None = None) -> float:
        """Measurement progress in percent."""
        if self._state is SessionState.COMPLETE:
            return 100.0
        if self._state is not SessionState.MEASURING:
            return 0.0
        return 100.0 * (1.0 - self.remaining_seconds(now) / self._duration)

    # ------------------------------------------------------------------
    # Camera
    # ------------------------------------------------------------------

    def acquire_camera(self, camera: Any = None) -> None:
        """
        Wait for the camera to deliver frames.

        If a camera collaborator is given (or was passed to the
        constructor) it is opened here; a :class:`CaptureUnavailable`
        failure is recorded on :attr:`capture_error` and re-raised, and the
        session stays in ``CAMERA_ACQUIRING`` so the user can retry.
        """
        with self._lock:
            if self._state is SessionState.MEASURING:
                raise SessionError("Cannot re-acquire the camera during a measurement")
            if camera is not None:
                self._camera = camera
            self.capture_error = None
            self._set_state(SessionState.CAMERA_ACQUIRING)
            if self._camera is None:
                return
            try:
                self._camera.open()
            except CaptureUnavailable as exc:
                self.capture_error = exc
                logger.error("Camera unavailable: %s", exc)
                raise

    def capture_failed(self, exc: CaptureUnavailable) -> None:
        """
        Report that the camera stopped delivering frames.

        Any running measurement is discarded and the session waits for
        the camera again.
        """
        with self._lock:
            self.capture_error = exc
            logger.error("Capture failed: %s", exc)
            if self._state is SessionState.MEASURING:
                logger.warning("Measurement aborted by capture failure.")
                self._generation += 1
                self._started_at = None
                self._live = None
            self._buffer.reset()
            self._finger_present = False
            if self._state is not SessionState.IDLE:
                self._set_state(SessionState.CAMERA_ACQUIRING)

    # ------------------------------------------------------------------
    # Frame input
    # ------------------------------------------------------------------

    def add_frame(self, frame: Optional[np.ndarray], timestamp: float | None = None) -> bool:
        """
        Feed one camera frame.

        Returns *False* if the frame was dropped (session idle, or still
        busy with the previous frame).
        """
        if not self._lock.acquire(blocking=False):
            self.dropped_frames += 1
            logger.debug("Frame dropped – previous frame still in progress.")
            return False
        try:
            if self._state is SessionState.IDLE:
                return False
            intensity = self.extractor.extract(frame)
            return self._ingest(intensity, timestamp)
        finally:
            self._lock.release()

    def add_sample(self, intensity: float, timestamp: float | None = None) -> bool:
        """Feed an already-extracted intensity (same rules as :meth:`add_frame`)."""
        if not self._lock.acquire(blocking=False):
            self.dropped_frames += 1
            return False
        try:
            if self._state is SessionState.IDLE:
                return False
            return self._ingest(float(intensity), timestamp)
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Measurement control
    # ------------------------------------------------------------------

    def start_session(self, duration_seconds: float | None = None) -> SessionHandle:
        """
        Start a fixed-length measurement.

        Raises
        ------
        SessionError
            If a measurement is already running or no finger covers the lens.
        """
        duration = self.config.session_seconds if duration_seconds is None else duration_seconds
        if duration <= 0:
            raise ValueError(f"duration_seconds must be positive, got {duration}")

        with self._lock:
            if self._state is SessionState.MEASURING:
                raise SessionError("A measurement is already in progress")
            if (self._state not in (SessionState.READY_TO_MEASURE, SessionState.COMPLETE)
                    or not self._finger_present):
                raise SessionError("Finger not detected – cover the camera lens with your fingertip")

            self._buffer.reset()
            self._history.clear()
            self._live = None
            self._reading = None
            self._generation += 1
            self._duration = float(duration)
            self._started_at = self._clock()
            self._set_state(SessionState.MEASURING)
            handle = SessionHandle(self, self._generation, self._duration, self._started_at)

        logger.info("Measurement %s started (%.0f s).", handle.session_id[:8], duration)
        return handle

    def check_deadline(self, now: float | None = None) -> Optional[VitalReading]:
        """
        Complete the measurement if its countdown has elapsed.

        Call this from a timer when frames may stop arriving; it is also
        checked on every sample.
        """
        with self._lock:
            now = self._clock() if now is None else now
            return self._check_deadline(now)

    def complete_now(self) -> VitalReading:
        """Finish the running measurement immediately and return its reading."""
        with self._lock:
            if self._state is SessionState.COMPLETE and self._reading is not None:
                return self._reading
            if self._state is not SessionState.MEASURING:
                raise SessionError(f"No measurement in progress (state={self._state.value})")
            return self._complete(self._clock())

    def reset(self) -> None:
        """Return to ``IDLE``, discarding all signal data and releasing the camera."""
        with self._lock:
            self._generation += 1
            self._buffer.reset()
            self._history.clear()
            self._live = None
            self._reading = None
            self._started_at = None
            self._finger_present = False
            self._last_intensity = 0.0
            try:
                if self._camera is not None:
                    self._camera.close()
            except Exception as exc:
                logger.error("Camera release failed during reset: %s", exc)
                raise
            finally:
                self._set_state(SessionState.IDLE)

    close = reset

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.info("Session state %s → %s", self._state.value, state.value)
        self._state = state

    def _ingest(self, intensity: float, timestamp: float | None) -> bool:
        ts = self._clock() if timestamp is None else float(timestamp)
        present = self.finger_detector.is_finger(intensity)

        if present and not self._finger_present:
            if len(self._buffer):
                logger.debug("Finger placed – clearing %d stale samples.", len(self._buffer))
            self._buffer.reset()
        elif not present and self._finger_present and self._state is SessionState.MEASURING:
            logger.warning("Finger lost during measurement (intensity=%.1f).", intensity)

        self._finger_present = present
        self._last_intensity = intensity
        self._buffer.add_sample(intensity, ts)

        if self._state in (SessionState.CAMERA_ACQUIRING,
                           SessionState.FINGER_NOT_DETECTED,
                           SessionState.READY_TO_MEASURE):
            self._set_state(SessionState.READY_TO_MEASURE if present
                            else SessionState.FINGER_NOT_DETECTED)
        elif self._state is SessionState.MEASURING:
            self._publish_live(ts)
            self._check_deadline(ts)
        return True

    def _publish_live(self, now: float) -> None:
        estimate = self.estimator.estimate(self._buffer)
        quality = self.quality_classifier.classify(self._buffer.intensities())
        remaining = self.remaining_seconds(now)
        self._live = LiveStatus(
            bpm=estimate.bpm,
            confidence=estimate.confidence,
            quality=quality,
            finger_present=self._finger_present,
            remaining_seconds=remaining,
            progress=100.0 * (1.0 - remaining / self._duration),
        )
        if estimate.bpm > 0:
            self._history.append((now, estimate.bpm))

    def _check_deadline(self, now: float) -> Optional[VitalReading]:
        if self._state is not SessionState.MEASURING or self._started_at is None:
            return None
        if now - self._started_at < self._duration:
            return None
        return self._complete(now)

    def _complete(self, now: float) -> VitalReading:
        estimate = self.estimator.estimate(self._buffer)
        quality = self.quality_classifier.classify(self._buffer.intensities())
        elapsed = min(max(0.0, now - self._started_at), self._duration)

        if estimate.bpm > 0:
            bpm, confidence, status = estimate.bpm, estimate.confidence, ReadingStatus.MEASURED
        elif self.config.placeholder_fallback:
            bpm = int(self._rng.integers(*PLACEHOLDER_BPM_RANGE))
            confidence, status = 0.0, ReadingStatus.PLACEHOLDER
            logger.warning("No pulse detected (%s); substituting placeholder %d BPM.",
                           estimate.reason, bpm)
        else:
            bpm, confidence, status = 0, 0.0, ReadingStatus.NO_PULSE
            logger.warning("No pulse detected (%s).", estimate.reason)

        reading = VitalReading(
            heart_rate_bpm=bpm,
            confidence=confidence,
            timestamp_utc=datetime.now(timezone.utc),
            measurement_duration_seconds=elapsed,
            status=status,
            quality=quality.level,
        )
        self._reading = reading
        self._started_at = None
        self._set_state(SessionState.COMPLETE)
        logger.info("Measurement complete: %d BPM (confidence %.2f, %s).",
                    bpm, confidence, status.value)
        return reading
