"""Environment-backed settings for the detector and the polling runner.

Values are read from the process environment after `load_dotenv()`, so a
`.env` file next to the working directory can provide them:

    TESSERACT_CMD=C:\\Program Files\\Tesseract-OCR\\tesseract.exe
    OCR_LANG=eng
    DETECTION_QUALITY=600
    CONDITION_IMAGE=button.png
    THRESHOLD=20
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from condition_detection.constants import (
    DEFAULT_DETECTION_QUALITY,
    DEFAULT_METRICS_TAG,
    DEFAULT_OCR_LANG,
    DEFAULT_OCR_PSM,
    DEFAULT_OCR_TIMEOUT_S,
    DEFAULT_POLL_INTERVAL_S,
    MAX_OCR_ATTEMPTS,
    OCR_AREA_CANDIDATE,
    OCR_AREAS,
)
from condition_detection.geometry import CoordinateSpace, Rect

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True)
class DetectorSettings:
    """Options of the detector and its OCR engine."""

    tesseract_path: str | None = None
    ocr_lang: str = DEFAULT_OCR_LANG
    ocr_psm: int = DEFAULT_OCR_PSM
    ocr_timeout: float = DEFAULT_OCR_TIMEOUT_S
    ocr_area: str = OCR_AREA_CANDIDATE
    max_ocr_attempts: int = MAX_OCR_ATTEMPTS
    detection_quality: float = DEFAULT_DETECTION_QUALITY
    metrics_tag: str = DEFAULT_METRICS_TAG
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Reject values the detector cannot work with."""
        if self.ocr_area not in OCR_AREAS:
            msg = f"OCR_AREA must be one of {OCR_AREAS}, got '{self.ocr_area}'"
            raise ValueError(msg)
        if self.max_ocr_attempts < 1:
            msg = f"MAX_OCR_ATTEMPTS must be at least 1, got {self.max_ocr_attempts}"
            raise ValueError(msg)
        if self.detection_quality <= 0:
            msg = f"DETECTION_QUALITY must be positive, got {self.detection_quality}"
            raise ValueError(msg)
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            msg = f"Unknown LOG_LEVEL '{self.log_level}'"
            raise ValueError(msg)


@dataclass(frozen=True)
class WatchSettings:
    """What the polling runner looks for, and how often."""

    condition_image: Path
    threshold: int | None = None
    target_text: str | None = None
    region: Rect | None = None
    poll_interval: float = DEFAULT_POLL_INTERVAL_S
    max_polls: int | None = None

    def __post_init__(self) -> None:
        """Exactly one detection mode must be configured."""
        if (self.threshold is None) == (self.target_text is None):
            msg = "Set exactly one of THRESHOLD or TARGET_TEXT"
            raise ValueError(msg)


def parse_region(value: str) -> Rect:
    """Parse 'x,y,width,height' into a full-size rectangle."""
    parts = [p.strip() for p in value.split(",")]
    if len(parts) != 4:
        msg = f"REGION must be 'x,y,width,height', got '{value}'"
        raise ValueError(msg)
    x, y, width, height = (int(p) for p in parts)
    if width <= 0 or height <= 0:
        msg = f"REGION size must be positive, got {width}x{height}"
        raise ValueError(msg)
    return Rect(x, y, width, height, CoordinateSpace.FULL_SIZE)


def _environment(env: Mapping[str, str] | None) -> Mapping[str, str]:
    if env is not None:
        return env
    load_dotenv()
    return os.environ


def load_settings(env: Mapping[str, str] | None = None) -> DetectorSettings:
    """Build detector settings from `env`, or from the environment and `.env`."""
    source = _environment(env)
    return DetectorSettings(
        tesseract_path=source.get("TESSERACT_CMD") or None,
        ocr_lang=source.get("OCR_LANG", DEFAULT_OCR_LANG),
        ocr_psm=int(source.get("OCR_PSM", DEFAULT_OCR_PSM)),
        ocr_timeout=float(source.get("OCR_TIMEOUT", DEFAULT_OCR_TIMEOUT_S)),
        ocr_area=source.get("OCR_AREA", OCR_AREA_CANDIDATE),
        max_ocr_attempts=int(source.get("MAX_OCR_ATTEMPTS", MAX_OCR_ATTEMPTS)),
        detection_quality=float(
            source.get("DETECTION_QUALITY", DEFAULT_DETECTION_QUALITY),
        ),
        metrics_tag=source.get("METRICS_TAG", DEFAULT_METRICS_TAG),
        log_level=source.get("LOG_LEVEL", "INFO"),
    )


def load_watch_settings(env: Mapping[str, str] | None = None) -> WatchSettings:
    """Build runner settings; CONDITION_IMAGE is mandatory."""
    source = _environment(env)
    condition = source.get("CONDITION_IMAGE")
    if not condition:
        msg = "CONDITION_IMAGE not found in environment variables."
        raise ValueError(msg)

    threshold = source.get("THRESHOLD")
    region = source.get("REGION")
    max_polls = source.get("MAX_POLLS")
    return WatchSettings(
        condition_image=Path(condition),
        threshold=int(threshold) if threshold else None,
        target_text=source.get("TARGET_TEXT") or None,
        region=parse_region(region) if region else None,
        poll_interval=float(source.get("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_S)),
        max_polls=int(max_polls) if max_polls else None,
    )
