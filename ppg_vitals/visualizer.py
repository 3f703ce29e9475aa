"""
Real-time overlay for the measurement screen.

Draws onto each camera frame:
  • The region of interest the extractor samples, with a placement hint.
  • The live BPM readout, colour-coded by confidence.
  • The signal-quality advisory ("press firmer", "cover the lens" …).
  • A countdown / progress bar while measuring.
  • The filtered PPG waveform and the recent BPM trace.
  • The final reading once the measurement is complete.
"""

from __future__ import annotations

from typing import Sequence, Tuple

import cv2
import numpy as np

from ppg_vitals.session import MeasurementSession, SessionState, VitalReading
from ppg_vitals.signal_quality import QualityLevel

# ---------------------------------------------------------------------------
# Colour palette (BGR)
# ---------------------------------------------------------------------------
_GREEN  = (0, 220,  80)
_RED    = (0,  50, 220)
_YELLOW = (0, 210, 210)
_WHITE  = (255, 255, 255)
_BLACK  = (0, 0, 0)
_CYAN   = (220, 200,  0)
_DARK   = (30, 30, 30)

_QUALITY_COLOURS = {
    QualityLevel.EXCELLENT: _GREEN,
    QualityLevel.GOOD: _GREEN,
    QualityLevel.FAIR: _YELLOW,
    QualityLevel.POOR: _RED,
}

_FONT = cv2.FONT_HERSHEY_SIMPLEX


class Visualizer:
    """
    Draws the measurement UI onto OpenCV frames in-place.

    Parameters
    ----------
    waveform_height:
        Pixel height of the waveform panel at the bottom of the frame.
    """

    def __init__(self, waveform_height: int = 80) -> None:
        self.waveform_height = waveform_height

    def draw(self, frame: np.ndarray, session: MeasurementSession) -> np.ndarray:
        """Annotate *frame* with the state of *session* and return it."""
        h, w = frame.shape[:2]
        finger = session.is_finger_present()
        state = session.state

        x, y, rw, rh = session.extractor.roi(w, h)
        colour = _GREEN if finger else _YELLOW
        cv2.rectangle(frame, (x, y), (x + rw, y + rh), colour, 2)
        if finger:
            hint = "Hold still..."
        else:
            hint = f"Place fingertip on the lens (red {session.last_intensity:.0f})"
        _text(frame, hint, (x, max(12, y - 8)), 0.5, colour, 1)

        if state is SessionState.MEASURING and session.live_status is not None:
            live = session.live_status
            self._draw_bpm(frame, live.bpm, live.confidence, session.buffer.fill_ratio)
            _text(frame, live.quality.message, (16, 100), 0.5,
                  _QUALITY_COLOURS[live.quality.level], 1)
            self._draw_progress(frame, live.progress, live.remaining_seconds)
        elif state is SessionState.COMPLETE and session.reading is not None:
            self._draw_reading(frame, session.reading)
        else:
            _text(frame, _STATE_HINTS.get(state, ""), (16, 52), 0.7, _YELLOW, 2)

        estimate = session.current_estimate()
        if len(estimate.filtered_signal) > 1:
            self._draw_waveform(frame, estimate.filtered_signal)
        bpms = [bpm for _, bpm in session.history]
        if len(bpms) > 1:
            self._draw_trace(frame, bpms)
        return frame

    # ------------------------------------------------------------------
    # Private drawing helpers
    # ------------------------------------------------------------------

    def _draw_bpm(self, frame: np.ndarray, bpm: int, confidence: float, fill: float) -> None:
        if bpm <= 0:
            _text(frame, f"Detecting pulse... {fill * 100:.0f}%", (16, 52), 0.7, _YELLOW, 2)
            return
        if confidence >= 0.8:
            col = _GREEN
        elif confidence >= 0.5:
            col = _YELLOW
        else:
            col = _RED
        _text(frame, f"{bpm} BPM", (16, 52), 1.6, _BLACK, 5)
        _text(frame, f"{bpm} BPM", (16, 52), 1.6, col, 3)
        bar_w = int(120 * confidence)
        cv2.rectangle(frame, (16, 60), (136, 72), _DARK, -1)
        cv2.rectangle(frame, (16, 60), (16 + bar_w, 72), col, -1)
        _text(frame, f"conf {confidence * 100:.0f}%", (16, 86), 0.4, _WHITE, 1)

    def _draw_reading(self, frame: np.ndarray, reading: VitalReading) -> None:
        if reading.is_reliable:
            _text(frame, f"{reading.heart_rate_bpm} BPM", (16, 52), 1.6, _GREEN, 3)
            _text(frame, f"conf {reading.confidence * 100:.0f}%", (16, 80), 0.5, _WHITE, 1)
        elif reading.heart_rate_bpm > 0:
            _text(frame, f"~{reading.heart_rate_bpm} BPM (unreliable)", (16, 52), 0.8, _YELLOW, 2)
        else:
            _text(frame, "No pulse detected - try again", (16, 52), 0.7, _RED, 2)

    def _draw_progress(self, frame: np.ndarray, progress: float, remaining: float) -> None:
        h, w = frame.shape[:2]
        bar_w = int((w - 32) * min(progress, 100.0) / 100.0)
        y0, y1 = h - self.waveform_height - 12, h - self.waveform_height - 4
        cv2.rectangle(frame, (16, y0), (w - 16, y1), _DARK, -1)
        cv2.rectangle(frame, (16, y0), (16 + bar_w, y1), _CYAN, -1)
        _text(frame, f"{remaining:.0f}s", (16, y0 - 2), 0.4, _CYAN, 1)

    def _draw_waveform(self, frame: np.ndarray, signal: np.ndarray) -> None:
        h, w = frame.shape[:2]
        panel_top = h - self.waveform_height
        cv2.rectangle(frame, (0, panel_top), (w, h), _DARK, -1)

        norm = _normalise(signal[-w:])
        margin = 6
        plot_h = self.waveform_height - 2 * margin
        xs = np.linspace(0, w - 1, len(norm)).astype(np.int32)
        ys = (panel_top + margin + (1.0 - norm) * plot_h).astype(np.int32)
        pts = np.column_stack([xs, ys])
        cv2.polylines(frame, [pts[:, None, :]], False, _GREEN, 1, cv2.LINE_AA)
        _text(frame, "PPG", (4, panel_top + 14), 0.4, _WHITE, 1)

    def _draw_trace(self, frame: np.ndarray, bpms: Sequence[int]) -> None:
        """Recent BPM values as a small line chart in the top-right corner."""
        w = frame.shape[1]
        px, py, pw, ph = w - 170, 10, 160, 60
        cv2.rectangle(frame, (px, py), (px + pw, py + ph), _DARK, -1)
        norm = _normalise(np.asarray(bpms, dtype=np.float64))
        xs = np.linspace(px + 4, px + pw - 4, len(norm)).astype(np.int32)
        ys = (py + ph - 4 - norm * (ph - 8)).astype(np.int32)
        pts = np.column_stack([xs, ys])
        cv2.polylines(frame, [pts[:, None, :]], False, _CYAN, 1, cv2.LINE_AA)


_STATE_HINTS = {
    SessionState.IDLE: "Camera off",
    SessionState.CAMERA_ACQUIRING: "Starting camera...",
    SessionState.FINGER_NOT_DETECTED: "No finger detected",
    SessionState.READY_TO_MEASURE: "Ready - press SPACE to measure",
}


def _normalise(values: np.ndarray) -> np.ndarray:
    mn, mx = float(values.min()), float(values.max())
    rng = mx - mn if mx != mn else 1.0
    return (values - mn) / rng


def _text(
    frame: np.ndarray,
    text: str,
    org: Tuple[int, int],
    scale: float,
    colour: Tuple[int, int, int],
    thickness: int,
) -> None:
    cv2.putText(frame, text, org, _FONT, scale, colour, thickness, cv2.LINE_AA)
