"""
Landmark samples delivered by the face-mesh collaborator.

Indices follow the MediaPipe face mesh with refined iris points. Only the
subset needed for EAR, iris centers and the left eye socket is kept.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Sequence, Tuple

import numpy as np  # type: ignore

Point = Tuple[float, float]

LEFT_EYE_EAR_IDX = (33, 160, 158, 133, 153, 144)
LEFT_IRIS_IDX = (468, 469, 470, 471)
RIGHT_IRIS_IDX = (473, 474, 475, 476)
# left, right, top, bottom
LEFT_EYE_SOCKET_IDX = (33, 133, 159, 145)

TRACKED_IDX = tuple(sorted(set(LEFT_EYE_EAR_IDX + LEFT_IRIS_IDX + RIGHT_IRIS_IDX + LEFT_EYE_SOCKET_IDX)))

NEUTRAL_POINT: Point = (0.5, 0.5)


@dataclass(frozen=True)
class LandmarkPoint:
    x: float
    y: float


@dataclass(frozen=True)
class LandmarkSample:
    points: Dict[int, LandmarkPoint] = field(default_factory=dict)
    timestamp_ms: float = 0.0

    def point(self, idx: int) -> Point:
        """Return (x, y) for idx, or the neutral point if missing/non-finite."""
        p = self.points.get(idx)
        if p is None:
            return NEUTRAL_POINT
        try:
            x = float(p.x)
            y = float(p.y)
        except (TypeError, ValueError):
            return NEUTRAL_POINT
        if not (math.isfinite(x) and math.isfinite(y)):
            return NEUTRAL_POINT
        return (x, y)

    def points_for(self, idxs: Sequence[int]) -> np.ndarray:
        return np.array([self.point(i) for i in idxs], dtype=float)

    # Adapters -----------------------------------------------------------
    @classmethod
    def from_face_landmarks(cls, landmarks: Any, timestamp_ms: float) -> "LandmarkSample":
        """Build a sample from a face-mesh landmark list (objects with .x/.y)."""
        pts: Dict[int, LandmarkPoint] = {}
        if landmarks is not None:
            n = len(landmarks)
            for idx in TRACKED_IDX:
                if idx >= n:
                    continue
                lm = landmarks[idx]
                try:
                    pts[idx] = LandmarkPoint(float(lm.x), float(lm.y))
                except (AttributeError, TypeError, ValueError):
                    continue
        return cls(points=pts, timestamp_ms=float(timestamp_ms))

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "LandmarkSample":
        """Build a sample from {"t": ms, "landmarks": {"<idx>": [x, y], ...}}."""
        raw = record.get("landmarks") or {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"'landmarks' must be an object, got {type(raw).__name__}")
        try:
            t = float(record.get("t", 0.0))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid timestamp {record.get('t')!r}") from exc

        pts: Dict[int, LandmarkPoint] = {}
        for key, xy in raw.items():
            try:
                idx = int(key)
                pts[idx] = LandmarkPoint(float(xy[0]), float(xy[1]))
            except (TypeError, ValueError, IndexError, KeyError):
                continue
        pts = {k: v for k, v in pts.items() if k in TRACKED_IDX}
        return cls(points=pts, timestamp_ms=t)

    def to_dict(self) -> dict:
        return {
            "t": self.timestamp_ms,
            "landmarks": {str(k): [p.x, p.y] for k, p in sorted(self.points.items())},
        }


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(a - b))


def eye_aspect_ratio(sample: LandmarkSample) -> float:
    p = sample.points_for(LEFT_EYE_EAR_IDX)
    vert_a = _dist(p[1], p[5])
    vert_b = _dist(p[2], p[4])
    horiz = _dist(p[0], p[3]) or 1e-6
    return (vert_a + vert_b) / (2.0 * horiz)


def _centroid(sample: LandmarkSample, idxs: Sequence[int]) -> np.ndarray:
    return sample.points_for(idxs).mean(axis=0)


def iris_center(sample: LandmarkSample) -> Point:
    """Mean of left and right iris centroids, in normalized frame units."""
    c = (_centroid(sample, LEFT_IRIS_IDX) + _centroid(sample, RIGHT_IRIS_IDX)) * 0.5
    return float(c[0]), float(c[1])


def socket_center(sample: LandmarkSample) -> Point:
    left, right, top, bottom = (sample.point(i) for i in LEFT_EYE_SOCKET_IDX)
    return (left[0] + right[0]) / 2.0, (top[1] + bottom[1]) / 2.0


def left_iris_offset(sample: LandmarkSample) -> Point:
    cx, cy = _centroid(sample, LEFT_IRIS_IDX)
    sx, sy = socket_center(sample)
    return float(cx - sx), float(cy - sy)
