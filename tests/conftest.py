from __future__ import annotations

from typing import Callable, List, Optional, Tuple

import pytest

from GazeBlinkTracker.core.settings import SettingsManager
from GazeBlinkTracker.tracking.landmarks import LandmarkPoint, LandmarkSample
from GazeBlinkTracker.tracking.pipeline import GazeTracker

SCREEN = (1920, 1080)
FRAME_MS = 33.0

OPEN_H = 0.018   # EAR 0.30
CLOSED_H = 0.003  # EAR 0.05
SOCKET_CENTER = (0.43, 0.40)


def build_sample(
    t: float,
    eye_h: float = OPEN_H,
    iris: Tuple[float, float] = SOCKET_CENTER,
    right_offset: float = 0.10,
) -> LandmarkSample:
    """Synthetic left eye 0.06 wide centered at (0.43, 0.40); EAR = eye_h / 0.06."""
    cx, cy = SOCKET_CENTER
    h2 = eye_h / 2.0
    pts = {
        33: (0.40, cy),
        133: (0.46, cy),
        160: (0.42, cy - h2),
        144: (0.42, cy + h2),
        158: (0.44, cy - h2),
        153: (0.44, cy + h2),
        159: (cx, cy - h2),
        145: (cx, cy + h2),
    }
    r = 0.005
    ix, iy = iris
    for base, ox in ((468, 0.0), (473, right_offset)):
        px = ix + ox
        pts[base] = (px - r, iy)
        pts[base + 1] = (px, iy - r)
        pts[base + 2] = (px + r, iy)
        pts[base + 3] = (px, iy + r)
    return LandmarkSample(points={k: LandmarkPoint(*v) for k, v in pts.items()}, timestamp_ms=t)


@pytest.fixture
def make_sample() -> Callable[..., LandmarkSample]:
    return build_sample


@pytest.fixture
def settings(tmp_path) -> SettingsManager:
    # isolated from any settings.json next to the package
    return SettingsManager(str(tmp_path / "settings.json"))


@pytest.fixture
def tracker(settings) -> GazeTracker:
    return GazeTracker(SCREEN, settings=settings)


def run_frames(
    tracker: GazeTracker,
    t0: float,
    t1: float,
    step: float = FRAME_MS,
    eye_h: float = OPEN_H,
    iris: Optional[Tuple[float, float]] = None,
) -> Tuple[float, List]:
    """Feed frames at t0, t0+step, ... while t < t1; returns (next_t, outputs)."""
    outs = []
    t = t0
    while t < t1:
        outs.append(tracker.process(build_sample(t, eye_h=eye_h, iris=iris or SOCKET_CENTER)))
        t += step
    return t, outs


@pytest.fixture
def warmed_tracker(tracker) -> GazeTracker:
    """Tracker whose EAR baseline is established and whose buffer is stable."""
    run_frames(tracker, 0.0, 2600.0)
    assert tracker.ear_baseline == pytest.approx(0.30)
    return tracker
