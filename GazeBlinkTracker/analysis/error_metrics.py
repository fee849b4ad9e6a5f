"""Pixel-error helpers for judging an affine calibration against its targets."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np  # type: ignore

from GazeBlinkTracker.tracking.calibration import AffineMapping, ScreenCalibrator

Point = Tuple[float, float]


@dataclass
class PointError:
    target: Point
    predicted: Point
    dist_px: float


@dataclass
class ErrorStats:
    count: int = 0
    mean_px: float = 0.0
    rms_px: float = 0.0
    max_px: float = 0.0


def point_errors(targets: Sequence[Point], predicted: Sequence[Point]) -> List[PointError]:
    if len(targets) != len(predicted):
        raise ValueError(f"{len(targets)} targets but {len(predicted)} predictions")
    if not targets:
        return []
    t = np.asarray(targets, dtype=float).reshape(-1, 2)
    p = np.asarray(predicted, dtype=float).reshape(-1, 2)
    dist = np.hypot(*(p - t).T)
    return [
        PointError(target=(float(a[0]), float(a[1])), predicted=(float(b[0]), float(b[1])), dist_px=float(d))
        for a, b, d in zip(t, p, dist)
    ]


def mapping_errors(mapping: AffineMapping, inputs: Sequence[Point], targets: Sequence[Point]) -> List[PointError]:
    """Errors of an affine mapping on (u, v) -> (x, y) pairs."""
    return point_errors(targets, [mapping.map(u, v) for u, v in inputs])


def calibration_errors(calibrator: ScreenCalibrator) -> List[PointError]:
    if calibrator.mapping is None:
        return []
    inputs, targets = calibrator.fit_pairs()
    return mapping_errors(calibrator.mapping, inputs, targets)


def error_stats(errors: Sequence[PointError]) -> ErrorStats:
    if not errors:
        return ErrorStats()
    d = np.array([e.dist_px for e in errors], dtype=float)
    return ErrorStats(
        count=int(d.size),
        mean_px=float(d.mean()),
        rms_px=float(np.sqrt(np.mean(d * d))),
        max_px=float(d.max()),
    )
