"""Replay a recorded landmark stream through the tracker.

Input is JSON lines, one frame per line:
    {"t": 1234.0, "landmarks": {"33": [0.41, 0.40], "468": [0.43, 0.40], ...}}

Usage: python -m GazeBlinkTracker.analysis.replay <recording.jsonl> [options]
"""
from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from typing import Iterator, List, Optional

from GazeBlinkTracker.analysis.error_metrics import calibration_errors, error_stats
from GazeBlinkTracker.control.events import CalibrationResult, TrackerOutput
from GazeBlinkTracker.core.settings import SettingsManager
from GazeBlinkTracker.tracking.calibration import ScreenCalibrator
from GazeBlinkTracker.tracking.landmarks import LandmarkSample
from GazeBlinkTracker.tracking.pipeline import GazeTracker


def iter_samples(path: str) -> Iterator[LandmarkSample]:
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{path}:{lineno}: {exc.msg}") from exc
            if not isinstance(record, dict):
                raise ValueError(f"{path}:{lineno}: expected a JSON object")
            yield LandmarkSample.from_dict(record)


def replay(tracker: GazeTracker, samples: Iterator[LandmarkSample]) -> List[TrackerOutput]:
    return [tracker.process(s) for s in samples]


def write_csv(path: str, outputs: List[TrackerOutput]) -> None:
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(["t", "x", "y", "calibrated", "click_x", "click_y"])
        for o in outputs:
            cx = f"{o.click.x:.0f}" if o.click is not None else ""
            cy = f"{o.click.y:.0f}" if o.click is not None else ""
            w.writerow([f"{o.timestamp_ms:.0f}", f"{o.x:.2f}", f"{o.y:.2f}", int(o.calibrated), cx, cy])


def summarize(tracker: GazeTracker, outputs: List[TrackerOutput]) -> None:
    clicks = [o.click for o in outputs if o.click is not None]
    results = [e for o in outputs for e in o.calibration_events if isinstance(e, CalibrationResult)]
    print(f"Frames:      {len(outputs)}")
    print(f"Clicks:      {len(clicks)}")
    for c in clicks:
        print(f"  t={c.timestamp_ms:.0f}ms at ({c.x:.0f}, {c.y:.0f})")
    print(f"EAR baseline: {tracker.ear_baseline:.3f}" if tracker.ear_baseline else "EAR baseline: not established")
    if results:
        print(f"Calibration: {'ok' if results[-1].success else 'failed (relative fallback)'}")
    print(f"Calibrated:  {tracker.calibrated}")
    errs = calibration_errors(tracker.calibrator)
    if errs:
        stats = error_stats(errs)
        print(f"Fit error:   mean {stats.mean_px:.2f}px | RMS {stats.rms_px:.2f}px | max {stats.max_px:.2f}px")
    if outputs:
        last = outputs[-1]
        print(f"Final position: ({last.x:.1f}, {last.y:.1f})")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay a JSON-lines landmark recording through the gaze tracker")
    parser.add_argument("recording", help="JSON-lines landmark recording")
    parser.add_argument("--width", type=int, default=1920, help="Screen width in px")
    parser.add_argument("--height", type=int, default=1080, help="Screen height in px")
    parser.add_argument("--settings", default=None, help="Path to a settings.json")
    parser.add_argument("--calibrate", action="store_true", help="Run the guided 9-point calibration at the start")
    parser.add_argument("--calibration", default=None, help="Load a saved calibration before replaying")
    parser.add_argument("--save-calibration", default=None, help="Write the solved calibration here")
    parser.add_argument("--csv", default=None, help="Write per-frame output CSV here")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    if args.width <= 0 or args.height <= 0:
        print("width and height must be > 0")
        return 2
    if not os.path.exists(args.recording):
        print(f"Recording not found: {args.recording}")
        return 2
    try:
        settings = SettingsManager(args.settings) if args.settings else SettingsManager()
        # config builders coerce values, so bad entries surface here
        tracker = GazeTracker((args.width, args.height), settings=settings)
    except (TypeError, ValueError) as exc:
        print(f"Invalid settings: {exc}")
        return 2

    if args.calibration:
        try:
            tracker.apply_calibration(ScreenCalibrator.load(args.calibration))
        except (OSError, ValueError, json.JSONDecodeError) as exc:
            print(f"Cannot load calibration: {exc}")
            return 2
    if args.calibrate:
        tracker.start_calibration()

    try:
        outputs = replay(tracker, iter_samples(args.recording))
    except ValueError as exc:
        print(f"Invalid recording: {exc}")
        return 2

    if args.csv:
        write_csv(args.csv, outputs)
    if args.save_calibration:
        if tracker.calibrated:
            tracker.calibrator.save(args.save_calibration)
        else:
            print("Not calibrated; nothing saved.")
    summarize(tracker, outputs)
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
