from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from .calibration import AffineMapping
from .landmarks import LandmarkSample, iris_center, left_iris_offset

Point = Tuple[float, float]


@dataclass
class MappingConfig:
    # pixels per normalized unit of iris offset from the socket center
    fallback_sensitivity: float = 2200.0


class GazeMapper:
    """Turn a landmark sample into a candidate screen position.

    Calibrated: absolute affine map of the iris center.
    Uncalibrated: relative motion, the left iris offset from its socket center
    scaled by a fixed sensitivity and added to the current position.
    """

    def __init__(self, config: Optional[MappingConfig] = None) -> None:
        self.config = config or MappingConfig()

    def candidate(
        self,
        sample: LandmarkSample,
        current: Point,
        screen_size: Tuple[int, int],
        affine: Optional[AffineMapping] = None,
    ) -> Point:
        if affine is not None:
            u, v = iris_center(sample)
            x, y = affine.map(u, v)
        else:
            dx, dy = left_iris_offset(sample)
            k = self.config.fallback_sensitivity
            x = current[0] + dx * k
            y = current[1] + dy * k
        return self._clamp(x, y, screen_size)

    @staticmethod
    def _clamp(x: float, y: float, screen_size: Tuple[int, int]) -> Point:
        w, h = float(screen_size[0]), float(screen_size[1])
        return (max(0.0, min(w, float(x))), max(0.0, min(h, float(y))))
