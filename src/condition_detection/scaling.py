"""Scale ratio management per screen-metrics configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from condition_detection.constants import (
    DEFAULT_SCALE_RATIO,
    DETECTION_QUALITY_MAX,
    DETECTION_QUALITY_MIN,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScaleEntry:
    """Ratio computed for one metrics tag, with the inputs it was derived from."""

    width: int
    height: int
    quality: float
    ratio: float


class ScaleRatioManager:
    """Derive and cache the detection scale ratio for each metrics tag.

    The ratio maps full-resolution pixels to the downscaled buffers correlation
    runs on: the longer scaled side approximates `quality` pixels, and images
    are never upscaled.
    """

    def __init__(self) -> None:
        """Start with no metrics; the default ratio keeps full resolution."""
        self._entries: dict[str, ScaleEntry] = {}
        self._active_tag: str | None = None

    @property
    def active_tag(self) -> str | None:
        """Tag of the metrics used for the next detections."""
        return self._active_tag

    @property
    def scale_ratio(self) -> float:
        """Ratio of the active metrics, or the default before any were set."""
        if self._active_tag is None:
            return DEFAULT_SCALE_RATIO
        return self._entries[self._active_tag].ratio

    def ratio_for(self, tag: str) -> float | None:
        """Return the cached ratio for `tag`, if any."""
        entry = self._entries.get(tag)
        return entry.ratio if entry else None

    def compute_scale_ratio(
        self,
        full_width: int,
        full_height: int,
        quality: float,
        tag: str,
    ) -> float:
        """Compute, store and activate the ratio for `tag`.

        Degenerate inputs do not raise; they store a ratio of 0.0 that the
        detector refuses to work with.
        """
        self._active_tag = tag
        cached = self._entries.get(tag)
        if cached and (cached.width, cached.height, cached.quality) == (
            full_width,
            full_height,
            quality,
        ):
            return cached.ratio

        ratio = self._derive_ratio(full_width, full_height, quality)
        self._entries[tag] = ScaleEntry(full_width, full_height, quality, ratio)
        return ratio

    def ensure_dimensions(self, full_width: int, full_height: int) -> float:
        """Recompute the active ratio if the screen size no longer matches it."""
        if self._active_tag is None:
            return self.scale_ratio

        entry = self._entries[self._active_tag]
        if (entry.width, entry.height) != (full_width, full_height):
            logger.warning(
                "Screen size changed for metrics '%s': [%d/%d] -> [%d/%d], recomputing ratio",
                self._active_tag,
                entry.width,
                entry.height,
                full_width,
                full_height,
            )
            return self.compute_scale_ratio(
                full_width,
                full_height,
                entry.quality,
                self._active_tag,
            )
        return entry.ratio

    def _derive_ratio(self, width: int, height: int, quality: float) -> float:
        if width <= 0 or height <= 0 or quality <= 0:
            logger.error(
                "Degenerate screen metrics: size=[%d/%d], quality=%s",
                width,
                height,
                quality,
            )
            return 0.0

        clamped = min(max(quality, DETECTION_QUALITY_MIN), DETECTION_QUALITY_MAX)
        if clamped != quality:
            logger.warning("Detection quality %s clamped to %s", quality, clamped)

        # Never upscale: a screen smaller than the quality keeps its resolution.
        return min(1.0, clamped / max(width, height))
