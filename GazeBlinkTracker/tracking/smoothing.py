from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, Optional, Tuple

import numpy as np  # type: ignore

Point = Tuple[float, float]


@dataclass
class StabilizerConfig:
    buffer_size: int = 11
    stable_mad_px: float = 7.0
    max_jump_ratio: float = 0.15
    smoothing_calibrated: float = 0.22
    smoothing_fallback: float = 0.12


def median_point(points: Iterable[Point]) -> Optional[Point]:
    arr = np.array(list(points), dtype=float)
    if arr.size == 0:
        return None
    med = np.median(arr, axis=0)
    return float(med[0]), float(med[1])


def median_abs_deviation(points: Iterable[Point]) -> float:
    """Median Euclidean distance to the component-wise median; inf if empty."""
    arr = np.array(list(points), dtype=float)
    if arr.size == 0:
        return math.inf
    med = np.median(arr, axis=0)
    return float(np.median(np.linalg.norm(arr - med, axis=1)))


class PositionStabilizer:
    """Two-regime stabilizer over a small ring of mapped candidates.

    - Stable (MAD <= stable_mad_px): snap to the buffer median.
    - Moving: exponential smoothing toward the median, heavier when running
      the uncalibrated fallback mapping.
    Large jumps of the median are clamped to a radius proportional to the
    screen so single-frame glitches cannot teleport the pointer.
    """

    def __init__(self, screen_size: Tuple[int, int], config: Optional[StabilizerConfig] = None) -> None:
        self.config = config or StabilizerConfig()
        self._buf: Deque[Point] = deque(maxlen=max(1, int(self.config.buffer_size)))
        self.screen_size = (int(screen_size[0]), int(screen_size[1]))
        self._pos: Point = (self.screen_size[0] / 2.0, self.screen_size[1] / 2.0)

    @property
    def position(self) -> Point:
        return self._pos

    @property
    def buffer(self) -> Tuple[Point, ...]:
        return tuple(self._buf)

    def clear(self) -> None:
        self._buf.clear()

    def mad(self) -> float:
        return median_abs_deviation(self._buf)

    def max_jump_px(self) -> float:
        return self.config.max_jump_ratio * float(max(self.screen_size))

    def resize(self, width: int, height: int) -> None:
        self.screen_size = (int(width), int(height))
        self._pos = self._clamp(self._pos)
        clamped = [self._clamp(p) for p in self._buf]
        self._buf.clear()
        self._buf.extend(clamped)

    def update(self, candidate: Point, calibrated: bool, frozen: bool = False) -> Point:
        cand = (float(candidate[0]), float(candidate[1]))
        self._buf.append(cand)
        med = median_point(self._buf) or cand
        mad = median_abs_deviation(self._buf)

        sx, sy = self._pos
        tx, ty = med
        delta = math.hypot(tx - sx, ty - sy)
        max_jump = self.max_jump_px()
        if delta > max_jump:
            ratio = max_jump / delta
            tx = sx + (tx - sx) * ratio
            ty = sy + (ty - sy) * ratio

        if frozen:
            return self._pos
        if mad <= self.config.stable_mad_px:
            self._pos = (tx, ty)
        else:
            a = self.config.smoothing_calibrated if calibrated else self.config.smoothing_fallback
            self._pos = (sx + (tx - sx) * a, sy + (ty - sy) * a)
        return self._pos

    def _clamp(self, p: Point) -> Point:
        w, h = self.screen_size
        return (max(0.0, min(float(w), p[0])), max(0.0, min(float(h), p[1])))
