"""
Event dataclasses pushed to listeners: per-frame output, clicks, calibration.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class ClickEvent:
    x: float
    y: float
    timestamp_ms: float


@dataclass(frozen=True)
class CalibrationProgress:
    point_index: int
    total_points: int


@dataclass(frozen=True)
class CalibrationResult:
    success: bool
    residual_mean_px: Optional[float] = None


CalibrationEvent = Union[CalibrationProgress, CalibrationResult]


@dataclass
class TrackerOutput:
    x: float
    y: float
    calibrated: bool
    timestamp_ms: float
    click: Optional[ClickEvent] = None
    calibration_events: List[CalibrationEvent] = field(default_factory=list)
