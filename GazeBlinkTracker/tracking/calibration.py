"""Guided 9-point screen calibration.

The sequence is a small clock-driven state machine: the owner calls
``advance(now_ms, screen_size)`` once per frame and ``observe(u, v)`` with the
iris-center estimate. Samples are only kept while a point is in its dwell
window. After the last point each target with at least ``min_samples`` is
summarized by the component-wise median of its observations, and an affine
map ``[u, v, 1] -> (x, y)`` is fitted by least squares through the 3x3
normal equations.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np  # type: ignore

from GazeBlinkTracker.control.events import CalibrationEvent, CalibrationProgress, CalibrationResult

logger = logging.getLogger(__name__)

Point = Tuple[float, float]

DEFAULT_GRID: Tuple[Point, ...] = (
    (0.1, 0.1), (0.5, 0.1), (0.9, 0.1),
    (0.1, 0.5), (0.5, 0.5), (0.9, 0.5),
    (0.1, 0.9), (0.5, 0.9), (0.9, 0.9),
)

IDLE = "idle"
LEAD_IN = "lead_in"
DWELL = "dwell"
PAUSE = "pause"
DONE = "done"
FAILED = "failed"
ABORTED = "aborted"


@dataclass
class CalibrationConfig:
    points: Tuple[Point, ...] = DEFAULT_GRID
    lead_in_ms: float = 900.0
    dwell_ms: float = 900.0
    pause_ms: float = 250.0
    min_samples: int = 3
    min_points: int = 5
    det_eps: float = 1e-9


@dataclass(frozen=True)
class AffineMapping:
    ax: float
    bx: float
    cx: float
    ay: float
    by: float
    cy: float

    def map(self, u: float, v: float) -> Point:
        return (self.ax * u + self.bx * v + self.cx, self.ay * u + self.by * v + self.cy)

    def to_json(self) -> dict:
        return asdict(self)

    @classmethod
    def from_json(cls, data: dict) -> "AffineMapping":
        try:
            return cls(**{k: float(data[k]) for k in ("ax", "bx", "cx", "ay", "by", "cy")})
        except (KeyError, TypeError) as exc:
            raise ValueError(f"invalid affine mapping: {exc}") from exc


def solve_affine(
    inputs: Sequence[Point],
    targets: Sequence[Point],
    det_eps: float = 1e-9,
) -> Optional[AffineMapping]:
    """Least-squares affine fit; None if fewer than 3 pairs or AᵀA is singular."""
    if len(inputs) != len(targets) or len(inputs) < 3:
        return None
    uv = np.asarray(inputs, dtype=float)
    xy = np.asarray(targets, dtype=float)
    A = np.column_stack([uv[:, 0], uv[:, 1], np.ones(len(uv))])
    ata = A.T @ A
    if abs(float(np.linalg.det(ata))) < det_eps:
        return None
    inv = np.linalg.inv(ata)
    px = inv @ (A.T @ xy[:, 0])
    py = inv @ (A.T @ xy[:, 1])
    return AffineMapping(
        ax=float(px[0]), bx=float(px[1]), cx=float(px[2]),
        ay=float(py[0]), by=float(py[1]), cy=float(py[2]),
    )


@dataclass
class CalibrationPoint:
    target: Point
    samples: List[Point] = field(default_factory=list)

    def summary(self) -> Point:
        arr = np.asarray(self.samples, dtype=float)
        med = np.median(arr, axis=0)
        return float(med[0]), float(med[1])


class ScreenCalibrator:
    def __init__(self, config: Optional[CalibrationConfig] = None) -> None:
        self.config = config or CalibrationConfig()
        self.points: List[CalibrationPoint] = [CalibrationPoint(t) for t in self.config.points]
        self.phase = IDLE
        self.index = -1
        self.mapping: Optional[AffineMapping] = None
        self._phase_start: Optional[float] = None
        self._fit_inputs: List[Point] = []
        self._fit_targets: List[Point] = []

    # State -------------------------------------------------------------
    @property
    def calibrated(self) -> bool:
        return self.mapping is not None

    @property
    def running(self) -> bool:
        return self.phase in (LEAD_IN, DWELL, PAUSE)

    @property
    def collecting(self) -> bool:
        return self.phase == DWELL

    @property
    def total_points(self) -> int:
        return len(self.points)

    def start(self) -> None:
        self.points = [CalibrationPoint(t) for t in self.config.points]
        self.mapping = None
        self._fit_inputs = []
        self._fit_targets = []
        self.index = -1
        self.phase = LEAD_IN
        # anchored on the next advance()
        self._phase_start = None
        logger.info("calibration started (%d points)", self.total_points)

    def abort(self) -> None:
        if not self.running:
            return
        self.phase = ABORTED
        self.mapping = None
        for p in self.points:
            p.samples.clear()
        logger.info("calibration aborted at point %d/%d", self.index + 1, self.total_points)

    def set_mapping(self, mapping: Optional[AffineMapping]) -> None:
        self.mapping = mapping

    # Frame hooks -------------------------------------------------------
    def observe(self, u: float, v: float) -> None:
        if self.collecting and 0 <= self.index < len(self.points):
            self.points[self.index].samples.append((float(u), float(v)))

    def advance(self, now_ms: float, screen_size: Tuple[int, int]) -> List[CalibrationEvent]:
        events: List[CalibrationEvent] = []
        if not self.running:
            return events
        if self._phase_start is None:
            self._phase_start = now_ms
        cfg = self.config
        while self.running:
            elapsed = now_ms - self._phase_start
            if self.phase == LEAD_IN:
                if elapsed < cfg.lead_in_ms:
                    break
                self._enter_point(0, self._phase_start + cfg.lead_in_ms, events)
            elif self.phase == DWELL:
                if elapsed < cfg.dwell_ms:
                    break
                self.phase = PAUSE
                self._phase_start += cfg.dwell_ms
            elif self.phase == PAUSE:
                if elapsed < cfg.pause_ms:
                    break
                nxt = self.index + 1
                if nxt < len(self.points):
                    self._enter_point(nxt, self._phase_start + cfg.pause_ms, events)
                else:
                    events.append(self._finish(screen_size))
        return events

    def _enter_point(self, idx: int, start: float, events: List[CalibrationEvent]) -> None:
        self.index = idx
        self.points[idx].samples.clear()
        self.phase = DWELL
        self._phase_start = start
        events.append(CalibrationProgress(point_index=idx, total_points=len(self.points)))

    # Fitting -----------------------------------------------------------
    def _finish(self, screen_size: Tuple[int, int]) -> CalibrationResult:
        w, h = float(screen_size[0]), float(screen_size[1])
        inputs: List[Point] = []
        targets: List[Point] = []
        for p in self.points:
            if len(p.samples) < self.config.min_samples:
                continue
            inputs.append(p.summary())
            targets.append((p.target[0] * w, p.target[1] * h))

        mapping = None
        if len(inputs) >= self.config.min_points:
            mapping = solve_affine(inputs, targets, det_eps=self.config.det_eps)
        if mapping is None:
            self.phase = FAILED
            self.mapping = None
            logger.info(
                "calibration unreliable (%d usable points); using relative fallback",
                len(inputs),
            )
            return CalibrationResult(success=False)

        self.phase = DONE
        self.mapping = mapping
        self._fit_inputs = inputs
        self._fit_targets = targets
        errs = self.residuals()
        mean_err = float(sum(errs) / len(errs))
        logger.info("calibration complete: %d points, mean residual %.1fpx", len(inputs), mean_err)
        return CalibrationResult(success=True, residual_mean_px=mean_err)

    def fit_pairs(self) -> Tuple[List[Point], List[Point]]:
        """(inputs, targets) used by the last successful fit."""
        return list(self._fit_inputs), list(self._fit_targets)

    def residuals(self) -> List[float]:
        if self.mapping is None:
            return []
        out: List[float] = []
        for (u, v), (tx, ty) in zip(self._fit_inputs, self._fit_targets):
            x, y = self.mapping.map(u, v)
            out.append(float(np.hypot(x - tx, y - ty)))
        return out

    # Persistence -------------------------------------------------------
    def save(self, path: str) -> None:
        if self.mapping is None:
            raise RuntimeError("Cannot save: calibration not solved.")
        data = {"version": 1, "mapping": self.mapping.to_json()}
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    @staticmethod
    def load(path: str) -> AffineMapping:
        if not os.path.exists(path):
            raise FileNotFoundError(path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict) or "mapping" not in data:
            raise ValueError(f"{path}: missing 'mapping'")
        return AffineMapping.from_json(data["mapping"])
