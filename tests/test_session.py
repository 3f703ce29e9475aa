"""
Unit tests for MeasurementSession, the camera collaborator and the overlay.
Run with:  pytest tests/test_session.py
"""

from __future__ import annotations

import numpy as np
import pytest

from conftest import FS, FakeCamera, FakeClock, pulse_wave
from ppg_vitals.camera import Camera
from ppg_vitals.config import EngineConfig
from ppg_vitals.errors import CaptureUnavailable, SessionError
from ppg_vitals.session import (
    MeasurementSession,
    ReadingStatus,
    SessionState,
    VitalReading,
)
from ppg_vitals.signal_quality import QualityLevel
from ppg_vitals.visualizer import Visualizer


def feed(session: MeasurementSession, clock: FakeClock, values, fs: float = FS) -> None:
    for v in values:
        clock.advance(1.0 / fs)
        session.add_sample(v)


def finger_frame(red: int = 200) -> np.ndarray:
    frame = np.zeros((120, 160, 3), dtype=np.uint8)
    frame[:, :, 2] = red
    frame[:, :, 1] = 40
    frame[:, :, 0] = 30
    return frame


@pytest.fixture
def session(clock) -> MeasurementSession:
    return MeasurementSession(clock=clock)


@pytest.fixture
def ready(session, clock) -> MeasurementSession:
    """Session whose camera is streaming with a finger on the lens."""
    session.acquire_camera()
    feed(session, clock, [150.0])
    return session


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestStates:

    def test_idle_drops_frames(self, session, clock):
        assert session.state is SessionState.IDLE
        assert session.add_sample(150.0) is False
        assert session.add_frame(finger_frame()) is False
        assert len(session.buffer) == 0

    def test_first_frame_ends_acquisition(self, session, clock):
        session.acquire_camera()
        assert session.state is SessionState.CAMERA_ACQUIRING
        feed(session, clock, [20.0])
        assert session.state is SessionState.FINGER_NOT_DETECTED
        assert session.is_finger_present() is False

    def test_finger_placement_is_reactive(self, ready, clock):
        assert ready.state is SessionState.READY_TO_MEASURE
        feed(ready, clock, [50.0])
        assert ready.state is SessionState.FINGER_NOT_DETECTED
        feed(ready, clock, [160.0])
        assert ready.state is SessionState.READY_TO_MEASURE

    def test_finger_recovery_clears_buffer(self, ready, clock):
        feed(ready, clock, [150.0] * 10 + [50.0] * 5)
        assert len(ready.buffer) == 16
        feed(ready, clock, [150.0])
        assert len(ready.buffer) == 1

    def test_add_frame_extracts_intensity(self, session, clock):
        session.acquire_camera()
        clock.advance(1 / FS)
        assert session.add_frame(finger_frame(200)) is True
        assert session.last_intensity == pytest.approx(200.0)
        assert session.is_finger_present() is True

    def test_start_requires_finger(self, session, clock):
        session.acquire_camera()
        feed(session, clock, [20.0])
        with pytest.raises(SessionError):
            session.start_session()

    def test_start_from_idle_rejected(self, session):
        with pytest.raises(SessionError):
            session.start_session()

    def test_single_active_measurement(self, ready):
        ready.start_session()
        with pytest.raises(SessionError):
            ready.start_session()

    def test_start_clears_buffer(self, ready, clock):
        feed(ready, clock, [150.0] * 40)
        ready.start_session()
        assert ready.state is SessionState.MEASURING
        assert len(ready.buffer) == 0

    def test_invalid_duration(self, ready):
        with pytest.raises(ValueError):
            ready.start_session(duration_seconds=0)

    def test_complete_now_requires_measurement(self, ready):
        with pytest.raises(SessionError):
            ready.complete_now()


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------

class TestMeasurement:

    def test_end_to_end_72_bpm(self, ready, clock):
        handle = ready.start_session()
        for v in pulse_wave(150):
            feed(ready, clock, [v])
            assert ready.is_finger_present() is True
        assert ready.live_status is not None
        assert 68 <= ready.live_status.bpm <= 76

        reading = ready.complete_now()
        assert 68 <= reading.heart_rate_bpm <= 76
        assert reading.status is ReadingStatus.MEASURED
        assert reading.is_reliable
        assert reading.confidence > 0.8
        assert reading.measurement_duration_seconds == pytest.approx(5.0)
        assert ready.state is SessionState.COMPLETE
        assert ready.complete_now() is reading
        assert handle.reading is reading
        assert handle.active is False

    def test_live_history(self, ready, clock):
        ready.start_session()
        feed(ready, clock, pulse_wave(150))
        history = ready.history
        assert 0 < len(history) <= ready.config.history_length
        assert all(bpm > 0 for _, bpm in history)

    def test_deadline_completes_on_sample(self, ready, clock):
        ready.start_session(duration_seconds=2.0)
        feed(ready, clock, pulse_wave(90))
        assert ready.state is SessionState.COMPLETE
        assert ready.reading is not None
        assert ready.reading.measurement_duration_seconds == pytest.approx(2.0)

    def test_deadline_without_frames(self, ready, clock):
        ready.start_session(duration_seconds=5.0)
        clock.advance(4.0)
        assert ready.check_deadline() is None
        clock.advance(2.0)
        reading = ready.check_deadline()
        assert ready.state is SessionState.COMPLETE
        assert reading.status is ReadingStatus.NO_PULSE
        assert reading.heart_rate_bpm == 0
        assert reading.confidence == 0.0
        assert reading.measurement_duration_seconds == pytest.approx(5.0)
        assert not reading.is_reliable

    def test_flat_signal_reports_no_pulse(self, ready, clock):
        ready.start_session()
        feed(ready, clock, [150.0] * 150)
        reading = ready.complete_now()
        assert reading.status is ReadingStatus.NO_PULSE
        assert reading.heart_rate_bpm == 0

    def test_placeholder_fallback_is_tagged(self, clock):
        session = MeasurementSession(EngineConfig(placeholder_fallback=True), clock=clock,
                                     rng=np.random.default_rng(0))
        session.acquire_camera()
        feed(session, clock, [150.0])
        session.start_session()
        feed(session, clock, [150.0] * 90)
        reading = session.complete_now()
        assert reading.status is ReadingStatus.PLACEHOLDER
        assert 70 <= reading.heart_rate_bpm < 80
        assert reading.confidence == 0.0
        assert not reading.is_reliable

    def test_progress_and_remaining(self, ready, clock):
        assert ready.progress() == 0.0
        ready.start_session(duration_seconds=10.0)
        clock.advance(5.0)
        assert ready.remaining_seconds() == pytest.approx(5.0)
        assert ready.progress() == pytest.approx(50.0)

    def test_new_measurement_after_complete(self, ready, clock):
        first = ready.start_session(duration_seconds=1.0)
        feed(ready, clock, [150.0] * 40)
        assert ready.state is SessionState.COMPLETE
        second = ready.start_session()
        assert ready.state is SessionState.MEASURING
        assert first.reading is None
        assert second.active

    def test_estimate_is_idempotent(self, ready, clock):
        ready.start_session()
        feed(ready, clock, pulse_wave(120))
        a, b = ready.current_estimate(), ready.current_estimate()
        assert (a.bpm, a.confidence) == (b.bpm, b.confidence)
        assert np.array_equal(a.filtered_signal, b.filtered_signal)

    def test_quality_reported(self, ready, clock):
        assert ready.current_quality().level is QualityLevel.POOR
        feed(ready, clock, pulse_wave(60, amplitude=5.0))
        assert ready.current_quality().level is QualityLevel.EXCELLENT


# ---------------------------------------------------------------------------
# Reset, cancellation and capture failures
# ---------------------------------------------------------------------------

class TestResetAndCapture:

    def test_reset_clears_everything(self, ready, clock):
        handle = ready.start_session()
        feed(ready, clock, pulse_wave(90))
        ready.reset()
        assert ready.state is SessionState.IDLE
        assert len(ready.buffer) == 0
        assert ready.current_estimate().bpm == 0
        assert ready.live_status is None
        assert handle.active is False
        assert handle.remaining_seconds() == 0.0
        assert ready.add_sample(150.0) is False

    def test_cancel_via_handle(self, ready):
        handle = ready.start_session()
        handle.cancel()
        assert ready.state is SessionState.IDLE

    def test_reset_releases_camera(self, clock):
        camera = FakeCamera()
        session = MeasurementSession(clock=clock, camera=camera)
        session.acquire_camera()
        assert camera.opened == 1
        session.reset()
        assert camera.closed == 1
        session.acquire_camera()
        assert camera.opened == 2

    def test_reset_reaches_idle_when_camera_release_fails(self, clock):
        camera = FakeCamera(close_fails_with=CaptureUnavailable("device busy"))
        session = MeasurementSession(clock=clock, camera=camera)
        session.acquire_camera()
        feed(session, clock, [150.0])
        handle = session.start_session()
        with pytest.raises(CaptureUnavailable):
            session.reset()
        assert session.state is SessionState.IDLE
        assert handle.active is False
        assert len(session.buffer) == 0
        with pytest.raises(SessionError):
            session.complete_now()
        camera.close_fails_with = None
        session.acquire_camera()
        feed(session, clock, [150.0])
        assert session.start_session().active is True

    def test_camera_failure_surfaces(self, clock):
        camera = FakeCamera(fail_with=CaptureUnavailable("no device"))
        session = MeasurementSession(clock=clock)
        with pytest.raises(CaptureUnavailable):
            session.acquire_camera(camera)
        assert session.state is SessionState.CAMERA_ACQUIRING
        assert isinstance(session.capture_error, CaptureUnavailable)

    def test_capture_failure_aborts_measurement(self, ready, clock):
        handle = ready.start_session()
        feed(ready, clock, pulse_wave(30))
        ready.capture_failed(CaptureUnavailable("stream lost"))
        assert ready.state is SessionState.CAMERA_ACQUIRING
        assert handle.active is False
        assert len(ready.buffer) == 0

    def test_busy_session_drops_frames(self, ready):
        ready._lock.acquire()
        try:
            assert ready.add_sample(150.0) is False
        finally:
            ready._lock.release()
        assert ready.dropped_frames == 1


# ---------------------------------------------------------------------------
# VitalReading
# ---------------------------------------------------------------------------

class TestVitalReading:

    def test_share_message_and_dict(self, ready, clock):
        ready.start_session()
        feed(ready, clock, pulse_wave(150))
        reading = ready.complete_now()
        assert reading.share_message() == f"I measured my heart rate and it's {reading.heart_rate_bpm} bpm"
        data = reading.to_dict()
        assert data["status"] == "measured"
        assert data["heart_rate_bpm"] == reading.heart_rate_bpm
        assert data["timestamp_utc"].endswith("+00:00")

    def test_reading_is_immutable(self, ready, clock):
        ready.start_session(duration_seconds=1.0)
        clock.advance(2.0)
        reading = ready.check_deadline()
        with pytest.raises(AttributeError):
            reading.heart_rate_bpm = 80
        assert "no pulse" in reading.share_message()


# ---------------------------------------------------------------------------
# Visualizer
# ---------------------------------------------------------------------------

class TestVisualizer:

    def test_draws_measuring_overlay(self, ready, clock):
        ready.start_session()
        feed(ready, clock, pulse_wave(120))
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        out = Visualizer().draw(frame, ready)
        assert out is frame
        assert out.any()

    @pytest.mark.parametrize("complete", [False, True])
    def test_draws_other_states(self, ready, clock, complete):
        if complete:
            ready.start_session(duration_seconds=1.0)
            clock.advance(2.0)
            ready.check_deadline()
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        assert Visualizer().draw(frame, ready).any()

    def test_draws_placement_hint_without_finger(self, session, clock):
        session.acquire_camera()
        feed(session, clock, [40.0])
        assert session.last_intensity == pytest.approx(40.0)
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        assert Visualizer().draw(frame, session).any()

    def test_draws_collecting_progress_before_first_estimate(self, ready, clock):
        ready.start_session()
        feed(ready, clock, pulse_wave(20))
        assert ready.live_status.bpm == 0
        assert 0.0 < ready.buffer.fill_ratio < 1.0
        frame = np.zeros((240, 320, 3), dtype=np.uint8)
        assert Visualizer().draw(frame, ready).any()


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------

class TestCamera:

    def test_missing_video_raises(self, tmp_path):
        cam = Camera(source=str(tmp_path / "missing.avi"), backend="opencv")
        with pytest.raises(CaptureUnavailable):
            cam.open()
        assert cam.is_open is False
        with pytest.raises(CaptureUnavailable):
            with cam:
                pass

    def test_read_before_open_raises(self):
        cam = Camera(backend="opencv")
        with pytest.raises(CaptureUnavailable):
            cam.read_frame()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            Camera(backend="v4l3")

    def test_video_replay_drives_session(self, tmp_path):
        import cv2

        path = str(tmp_path / "finger.avi")
        writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"MJPG"), 30, (64, 48))
        if not writer.isOpened():
            pytest.skip("MJPG encoder not available")
        for _ in range(45):
            writer.write(np.dstack([np.full((48, 64), c, np.uint8) for c in (30, 40, 200)]))
        writer.release()

        cam = Camera(source=path, fps=30)
        session = MeasurementSession(clock=cam.clock, camera=cam)
        session.acquire_camera()
        count = 0
        for frame in cam.frames():
            session.add_frame(frame)
            count += 1
        assert count == 45
        assert cam.clock() == pytest.approx(45 / cam.fps)
        assert session.state is SessionState.READY_TO_MEASURE
        assert len(session.buffer) == 45
        session.reset()
        assert cam.is_open is False
