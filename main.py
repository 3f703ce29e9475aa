#!/usr/bin/env python3
"""
PPG Vitals – command-line measurement.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --resolution WxH     Camera resolution (default: 640x480)
    --fps INT            Nominal frame rate (default: 30)
    --camera-index INT   OpenCV camera index (default: 0)
    --video PATH         Replay a recorded video instead of a live camera
    --duration FLOAT     Measurement length in seconds (default: 30)
    --filter NAME        DC-removal filter: moving_average | bandpass
    --placeholder-fallback
                         Report a placeholder BPM when no pulse is found
    --headless           No display window; start automatically and log to stdout
    --json               Print the final reading as JSON
    -v / --verbose       Debug logging

Keyboard shortcuts (when a window is open)
------------------------------------------
    SPACE    – start a measurement (finger must cover the lens)
    r        – reset and restart the camera
    q / ESC  – quit
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import cv2

from ppg_vitals.camera import Camera
from ppg_vitals.config import EngineConfig
from ppg_vitals.errors import CaptureUnavailable, SessionError
from ppg_vitals.session import MeasurementSession, SessionState, VitalReading
from ppg_vitals.visualizer import Visualizer

logger = logging.getLogger("ppg_vitals")

WINDOW_NAME = "PPG Vitals"


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Fingertip heart-rate measurement via the camera (PPG)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--fps", type=int, default=30,
                        help="Nominal capture frame rate")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--video", type=Path, default=None,
                        help="Replay this video file instead of a live camera")
    parser.add_argument("--duration", type=float, default=30.0,
                        help="Measurement length in seconds")
    parser.add_argument("--filter", choices=("moving_average", "bandpass"),
                        default="moving_average", help="DC-removal filter")
    parser.add_argument("--placeholder-fallback", action="store_true",
                        help="Report a placeholder BPM when no pulse is found")
    parser.add_argument("--headless", action="store_true",
                        help="No display window; start automatically and log to stdout")
    parser.add_argument("--json", action="store_true",
                        help="Print the final reading as JSON")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EngineConfig:
    return EngineConfig(
        sample_rate=float(args.fps),
        session_seconds=args.duration,
        filter_method=args.filter,
        placeholder_fallback=args.placeholder_fallback,
    )


def report(reading: VitalReading, as_json: bool) -> None:
    if as_json:
        print(json.dumps(reading.to_dict(), indent=2))
    else:
        print(reading.share_message())
        print(f"  confidence={reading.confidence:.2f}  quality={reading.quality.value}  "
              f"duration={reading.measurement_duration_seconds:.1f}s  "
              f"status={reading.status.value}")


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    source = str(args.video) if args.video else args.camera_index
    camera = Camera(source=source, resolution=(res_w, res_h), fps=args.fps)
    session = MeasurementSession(build_config(args), clock=camera.clock, camera=camera)
    vis = None if args.headless else Visualizer()

    try:
        session.acquire_camera()
    except CaptureUnavailable:
        return 2

    if vis is not None:
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)

    reading: VitalReading | None = None
    frame_idx = 0
    log_interval = max(1, args.fps)

    try:
        for frame in camera.frames():
            session.add_frame(frame)
            session.check_deadline()
            frame_idx += 1

            if args.headless and session.state is SessionState.READY_TO_MEASURE:
                session.start_session()

            if session.state is SessionState.COMPLETE and reading is None:
                reading = session.reading
                report(reading, args.json)
                if args.headless:
                    break

            if args.headless and frame_idx % log_interval == 0:
                live = session.live_status
                if session.state is SessionState.MEASURING and live is not None:
                    print(f"[{live.remaining_seconds:4.0f}s] BPM={live.bpm}  "
                          f"conf={live.confidence:.2f}  quality={live.quality.level.value}")
                elif not session.is_finger_present():
                    print("Waiting for finger…")

            if vis is None:
                continue

            cv2.imshow(WINDOW_NAME, vis.draw(frame, session))
            key = cv2.waitKey(1) & 0xFF
            if key in (ord("q"), 27):          # q or ESC
                logger.info("Quit requested by user.")
                break
            elif key == ord(" "):
                try:
                    session.start_session()
                    reading = None
                except SessionError as exc:
                    logger.warning("%s", exc)
            elif key == ord("r"):
                session.reset()
                reading = None
                session.acquire_camera()

    except CaptureUnavailable as exc:
        session.capture_failed(exc)
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        if session.state is SessionState.MEASURING:
            reading = session.complete_now()
            report(reading, args.json)
        session.close()
        if vis is not None:
            cv2.destroyAllWindows()

    if reading is None:
        logger.warning("No measurement was completed.")
        return 1 if args.headless else 0
    return 0 if reading.is_reliable else 3


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )
    return run(args)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
