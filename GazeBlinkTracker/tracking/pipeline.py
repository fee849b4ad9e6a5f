from __future__ import annotations

import logging
import math
from typing import Any, Callable, List, Optional, Tuple

from GazeBlinkTracker.control.events import TrackerOutput
from GazeBlinkTracker.core.settings import SettingsManager
from GazeBlinkTracker.utils.blink import BlinkClassifier, EarBaselineCalibrator

from .calibration import AffineMapping, ScreenCalibrator
from .landmarks import LandmarkSample, eye_aspect_ratio, iris_center
from .mapping import GazeMapper
from .smoothing import PositionStabilizer

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class GazeTracker:
    """Per-session orchestrator: one call to process() per video frame.

    Frame order:
      1) EAR -> baseline warm-up
      2) blink state machine; while the eye is closed the previous position is
         re-emitted and nothing else runs
      3) iris center -> calibration collector
      4) candidate mapping -> stabilizer
      5) attach the click accepted on this frame, if any
    Not reentrant: callers must not run process() concurrently.
    """

    def __init__(self, screen_size: Tuple[int, int], settings: Optional[SettingsManager] = None) -> None:
        self.settings = settings or SettingsManager()
        self.screen_size = (int(screen_size[0]), int(screen_size[1]))
        self.baseline = EarBaselineCalibrator(self.settings.baseline_config())
        self.blink = BlinkClassifier(self.settings.blink_config())
        self.calibrator = ScreenCalibrator(self.settings.calibration_config())
        self.mapper = GazeMapper(self.settings.mapping_config())
        self.stabilizer = PositionStabilizer(self.screen_size, self.settings.stabilizer_config())
        self._listeners: List[Listener] = []
        self._start_ts: Optional[float] = None
        self._last_ts: Optional[float] = None

    # Properties ----------------------------------------------------------
    @property
    def calibrated(self) -> bool:
        return self.calibrator.calibrated

    @property
    def position(self) -> Tuple[float, float]:
        return self.stabilizer.position

    @property
    def ear_baseline(self) -> float:
        return self.baseline.baseline

    # Control surface -----------------------------------------------------
    def add_listener(self, callback: Listener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def start_calibration(self) -> None:
        self.calibrator.start()

    def abort_calibration(self) -> None:
        self.calibrator.abort()

    def apply_calibration(self, mapping: Optional[AffineMapping]) -> None:
        """Install a previously solved mapping (None reverts to fallback)."""
        self.calibrator.abort()
        self.calibrator.set_mapping(mapping)

    def resize(self, width: int, height: int) -> None:
        self.screen_size = (int(width), int(height))
        self.stabilizer.resize(width, height)

    # Frame loop ------------------------------------------------------------
    def _monotonic(self, ts: float) -> float:
        ts = float(ts)
        if not math.isfinite(ts):
            ts = (self._last_ts or 0.0) + 1.0
        elif self._last_ts is not None and ts <= self._last_ts:
            ts = self._last_ts + 1.0
        self._last_ts = ts
        return ts

    def process(self, sample: LandmarkSample, timestamp: Optional[float] = None) -> TrackerOutput:
        ts = self._monotonic(sample.timestamp_ms if timestamp is None else timestamp)
        if self._start_ts is None:
            self._start_ts = ts
        cal_events = self.calibrator.advance(ts, self.screen_size)

        ear = eye_aspect_ratio(sample)
        if not self.baseline.is_finished:
            self.baseline.observe(ear, ts - self._start_ts)
        threshold = self.baseline.threshold(self.blink.config.threshold_ratio)

        result = self.blink.update(
            ear, threshold, ts, stability=self.stabilizer.mad, position=self.stabilizer.position
        )
        if self.blink.is_closed:
            x, y = self.stabilizer.position
            out = TrackerOutput(x=x, y=y, calibrated=self.calibrated, timestamp_ms=ts, calibration_events=cal_events)
            self._emit(out)
            return out

        if result.click is not None:
            self.stabilizer.clear()

        u, v = iris_center(sample)
        self.calibrator.observe(u, v)

        cand = self.mapper.candidate(sample, self.stabilizer.position, self.screen_size, self.calibrator.mapping)
        x, y = self.stabilizer.update(cand, calibrated=self.calibrated, frozen=self.blink.is_frozen(ts))

        out = TrackerOutput(
            x=x, y=y, calibrated=self.calibrated, timestamp_ms=ts,
            click=result.click, calibration_events=cal_events,
        )
        self._emit(out)
        return out

    def _emit(self, out: TrackerOutput) -> None:
        if not self._listeners:
            return
        events: List[Any] = list(out.calibration_events)
        events.append(out)
        if out.click is not None:
            events.append(out.click)
        for ev in events:
            for cb in list(self._listeners):
                try:
                    cb(ev)
                except Exception:
                    logger.exception("listener %r failed on %s", cb, type(ev).__name__)
