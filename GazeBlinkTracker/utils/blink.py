"""
Blink detection using the Eye Aspect Ratio (EAR) of the left eye.

Two pieces:
- EarBaselineCalibrator: learns the neutral open-eye EAR from a warm-up window
  (median of samples) and falls back to a fixed constant when the result is
  outside a plausible range.
- BlinkClassifier: open/closed state machine over EAR vs. threshold. A
  reopening is accepted as a click only if the closure lasted between
  min_blink_ms and max_blink_ms, the cooldown has passed, and the pointer was
  fixating (buffer MAD small) before the eye closed.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np  # type: ignore

from GazeBlinkTracker.control.events import ClickEvent

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


@dataclass
class BaselineConfig:
    warmup_ms: float = 2000.0
    min_plausible: float = 0.12
    max_plausible: float = 0.45
    fallback: float = 0.22


@dataclass
class BlinkConfig:
    threshold_ratio: float = 0.65
    min_blink_ms: float = 60.0
    max_blink_ms: float = 400.0
    cooldown_ms: float = 600.0
    stability_px: float = 12.0
    freeze_ms: float = 280.0


class EarBaselineCalibrator:
    def __init__(self, config: Optional[BaselineConfig] = None) -> None:
        self.config = config or BaselineConfig()
        self._samples: List[float] = []
        self._baseline = 0.0
        self._done = False

    @property
    def baseline(self) -> float:
        return self._baseline

    @property
    def is_calibrated(self) -> bool:
        return self._baseline > 0.0

    @property
    def is_finished(self) -> bool:
        return self._done

    def threshold(self, ratio: float) -> float:
        return self._baseline * ratio if self._baseline > 0.0 else 0.0

    def observe(self, ear: float, elapsed_ms: float) -> Optional[float]:
        """Feed one EAR sample; returns the baseline once warm-up has ended."""
        if self._done:
            return self._baseline or None
        if elapsed_ms < self.config.warmup_ms:
            if math.isfinite(ear) and ear > 0.0:
                self._samples.append(float(ear))
            return None
        self._done = True
        if not self._samples:
            logger.warning("EAR warm-up collected no usable samples; blink detection disabled")
            return None
        value = float(np.median(self._samples))
        if not (self.config.min_plausible <= value <= self.config.max_plausible):
            logger.warning(
                "EAR baseline %.3f outside [%.2f, %.2f]; using fallback %.2f",
                value, self.config.min_plausible, self.config.max_plausible, self.config.fallback,
            )
            value = self.config.fallback
        self._baseline = value
        self._samples.clear()
        logger.info("EAR baseline established: %.3f", value)
        return value


@dataclass
class BlinkState:
    is_closed: bool = False
    closed_since: float = 0.0
    last_click_at: Optional[float] = None
    click_freeze_until: float = 0.0


@dataclass
class BlinkResult:
    closed_now: bool = False
    opened_now: bool = False
    duration_ms: float = 0.0
    click: Optional[ClickEvent] = None
    rejected: Optional[str] = None


class BlinkClassifier:
    def __init__(self, config: Optional[BlinkConfig] = None) -> None:
        self.config = config or BlinkConfig()
        self.state = BlinkState()

    @property
    def is_closed(self) -> bool:
        return self.state.is_closed

    def is_frozen(self, now_ms: float) -> bool:
        return now_ms < self.state.click_freeze_until

    def update(
        self,
        ear: float,
        threshold: float,
        now_ms: float,
        stability: Callable[[], float],
        position: Point,
    ) -> BlinkResult:
        """Advance the state machine by one frame.

        stability is called only when a reopening has to be classified; it must
        return the MAD of the position buffer as it stood before the closure.
        """
        st = self.state
        if threshold <= 0.0 or not math.isfinite(ear):
            return BlinkResult()

        if not st.is_closed:
            if ear < threshold:
                st.is_closed = True
                st.closed_since = now_ms
                return BlinkResult(closed_now=True)
            return BlinkResult()

        if ear < threshold:
            return BlinkResult()

        st.is_closed = False
        duration = now_ms - st.closed_since
        res = BlinkResult(opened_now=True, duration_ms=duration)
        cfg = self.config
        if duration < cfg.min_blink_ms:
            res.rejected = "too_short"
        elif duration > cfg.max_blink_ms:
            res.rejected = "too_long"
        elif st.last_click_at is not None and now_ms - st.last_click_at < cfg.cooldown_ms:
            res.rejected = "cooldown"
        elif stability() > cfg.stability_px:
            res.rejected = "unstable"
        if res.rejected is not None:
            logger.debug("blink of %.0fms rejected: %s", duration, res.rejected)
            return res

        st.last_click_at = now_ms
        st.click_freeze_until = now_ms + cfg.freeze_ms
        res.click = ClickEvent(x=float(round(position[0])), y=float(round(position[1])), timestamp_ms=now_ms)
        logger.debug("blink of %.0fms accepted as click at (%.0f, %.0f)", duration, res.click.x, res.click.y)
        return res
