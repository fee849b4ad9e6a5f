"""
Cursor sink via pyautogui.

Register an instance with GazeTracker.add_listener(): every TrackerOutput
moves the OS cursor, every ClickEvent performs a plain click at its
coordinate. What ends up being clicked is the OS's business.

Notes:
- Built-in pyautogui pauses are disabled (PAUSE=0) and FAILSAFE is off.
- Without pyautogui (or without a display) the sink is a no-op.
"""
from __future__ import annotations

import logging
from typing import Any

try:
    import pyautogui  # type: ignore
except Exception:  # pragma: no cover
    pyautogui = None

from .events import ClickEvent, TrackerOutput

logger = logging.getLogger(__name__)


class CursorController:
    def __init__(self, clicks_enabled: bool = True) -> None:
        self.clicks_enabled = clicks_enabled
        if pyautogui:
            try:
                pyautogui.FAILSAFE = False
                pyautogui.PAUSE = 0  # disable built-in delays
            except Exception:
                pass

    @property
    def available(self) -> bool:
        return pyautogui is not None

    def move_to(self, x: float, y: float) -> None:
        if pyautogui is None:
            return
        try:
            pyautogui.moveTo(int(round(x)), int(round(y)), duration=0)
        except Exception as exc:
            logger.debug("cursor move failed: %s", exc)

    def click_at(self, x: float, y: float) -> None:
        if pyautogui is None or not self.clicks_enabled:
            return
        try:
            pyautogui.click(int(round(x)), int(round(y)))
        except Exception as exc:
            logger.warning("click dispatch failed: %s", exc)

    def __call__(self, event: Any) -> None:
        if isinstance(event, TrackerOutput):
            self.move_to(event.x, event.y)
        elif isinstance(event, ClickEvent):
            self.click_at(event.x, event.y)
