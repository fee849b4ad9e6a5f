"""
Settings manager for GazeBlinkTracker.

Loads/saves JSON settings from GazeBlinkTracker/settings.json (or an explicit
path) and builds the typed configs consumed by the tracking components.

The blink duration bounds, the 7px/12px stability thresholds and the
0.22/0.12 smoothing factors were tuned empirically; they live here so each
deployment can retune them.
"""
from __future__ import annotations

import copy
import json
import os
from typing import Any, Dict, Optional, Tuple

from GazeBlinkTracker.tracking.calibration import DEFAULT_GRID, CalibrationConfig
from GazeBlinkTracker.tracking.mapping import MappingConfig
from GazeBlinkTracker.tracking.smoothing import StabilizerConfig
from GazeBlinkTracker.utils.blink import BaselineConfig, BlinkConfig

DEFAULTS: Dict[str, Any] = {
    "baseline": {
        "warmup_ms": 2000,
        "min_plausible": 0.12,
        "max_plausible": 0.45,
        "fallback": 0.22,
    },
    "blink": {
        "threshold_ratio": 0.65,
        "min_blink_ms": 60,
        "max_blink_ms": 400,
        "cooldown_ms": 600,
        "stability_px": 12.0,
        "freeze_ms": 280,
    },
    "stabilizer": {
        "buffer_size": 11,
        "stable_mad_px": 7.0,
        "max_jump_ratio": 0.15,
        "smoothing_calibrated": 0.22,
        "smoothing_fallback": 0.12,
    },
    "calibration": {
        "points": [list(p) for p in DEFAULT_GRID],
        "lead_in_ms": 900,
        "dwell_ms": 900,
        "pause_ms": 250,
        "min_samples": 3,
        "min_points": 5,
    },
    "mapping": {"fallback_sensitivity": 2200.0},
}


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


class SettingsManager:
    def __init__(self, path: Optional[str] = None) -> None:
        if path is None:
            here = os.path.dirname(os.path.abspath(__file__))
            path = os.path.join(os.path.dirname(here), "settings.json")
        self.path = path
        self.data: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        self.data = copy.deepcopy(DEFAULTS)
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as f:
            stored = json.load(f)
        if not isinstance(stored, dict):
            raise ValueError(f"{self.path}: settings must be a JSON object")
        for section, values in stored.items():
            if isinstance(values, dict) and isinstance(self.data.get(section), dict):
                self.data[section].update(values)
            else:
                self.data[section] = values

    def save(self) -> None:
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)

    def _section(self, name: str) -> Dict[str, Any]:
        sec = self.data.get(name)
        if not isinstance(sec, dict):
            sec = copy.deepcopy(DEFAULTS[name])
            self.data[name] = sec
        return sec

    def _get(self, section: str, key: str) -> Any:
        return self._section(section).get(key, DEFAULTS[section][key])

    def set(self, section: str, key: str, value: Any) -> None:
        self._section(section)[key] = value

    # Typed configs ---------------------------------------------------------
    def baseline_config(self) -> BaselineConfig:
        lo = float(self._get("baseline", "min_plausible"))
        hi = float(self._get("baseline", "max_plausible"))
        if hi < lo:
            lo, hi = hi, lo
        return BaselineConfig(
            warmup_ms=max(0.0, float(self._get("baseline", "warmup_ms"))),
            min_plausible=lo,
            max_plausible=hi,
            fallback=float(self._get("baseline", "fallback")),
        )

    def blink_config(self) -> BlinkConfig:
        lo = max(0.0, float(self._get("blink", "min_blink_ms")))
        hi = max(lo, float(self._get("blink", "max_blink_ms")))
        return BlinkConfig(
            threshold_ratio=_clamp(float(self._get("blink", "threshold_ratio")), 0.05, 1.0),
            min_blink_ms=lo,
            max_blink_ms=hi,
            cooldown_ms=max(0.0, float(self._get("blink", "cooldown_ms"))),
            stability_px=max(0.0, float(self._get("blink", "stability_px"))),
            freeze_ms=max(0.0, float(self._get("blink", "freeze_ms"))),
        )

    def stabilizer_config(self) -> StabilizerConfig:
        return StabilizerConfig(
            buffer_size=max(1, int(self._get("stabilizer", "buffer_size"))),
            stable_mad_px=max(0.0, float(self._get("stabilizer", "stable_mad_px"))),
            max_jump_ratio=_clamp(float(self._get("stabilizer", "max_jump_ratio")), 0.01, 1.0),
            smoothing_calibrated=_clamp(float(self._get("stabilizer", "smoothing_calibrated")), 0.0, 1.0),
            smoothing_fallback=_clamp(float(self._get("stabilizer", "smoothing_fallback")), 0.0, 1.0),
        )

    def calibration_config(self) -> CalibrationConfig:
        pts = self._get("calibration", "points")
        try:
            grid: Tuple[Tuple[float, float], ...] = tuple(
                (_clamp(float(p[0]), 0.0, 1.0), _clamp(float(p[1]), 0.0, 1.0)) for p in pts
            )
        except (TypeError, ValueError, IndexError):
            grid = DEFAULT_GRID
        if not grid:
            grid = DEFAULT_GRID
        return CalibrationConfig(
            points=grid,
            lead_in_ms=max(0.0, float(self._get("calibration", "lead_in_ms"))),
            dwell_ms=max(1.0, float(self._get("calibration", "dwell_ms"))),
            pause_ms=max(0.0, float(self._get("calibration", "pause_ms"))),
            min_samples=max(1, int(self._get("calibration", "min_samples"))),
            min_points=max(3, int(self._get("calibration", "min_points"))),
        )

    def mapping_config(self) -> MappingConfig:
        return MappingConfig(fallback_sensitivity=float(self._get("mapping", "fallback_sensitivity")))
