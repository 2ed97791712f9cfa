"""Service for capturing screen frames fed to the condition detector."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import pyautogui

if TYPE_CHECKING:
    from PIL import Image


class ScreenshotService:
    """Grab full-screen frames as PIL images."""

    def __init__(self, settle_delay: float = 0.0) -> None:
        """Initialize service with the delay to wait before each capture."""
        self._settle_delay = settle_delay

    def capture_frame(self) -> Image.Image:
        """Capture the whole screen in full-size pixels."""
        if self._settle_delay:
            time.sleep(self._settle_delay)
        return pyautogui.screenshot()
