"""Rectangles tagged with the coordinate space they live in.

Detection juggles several pixel spaces:
  - FULL_SIZE: the screen as captured.
  - SCALED: the screen after the quality scale ratio was applied.
  - CROPPED_SCALED: scaled pixels relative to the detection region origin.
  - CROPPED_FULL_SIZE: full-size pixels relative to the detection region origin.

Every conversion goes through `scale_position` / `scale_length` / `scale_span`,
which round the same way `cv2.resize` sizes its output (half to even), so a
rectangle scaled here stays addressable against a buffer scaled by OpenCV.
Rectangles are scaled edge by edge: a rectangle inside a W-wide buffer keeps
its right edge within `round(W * ratio)`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class CoordinateSpace(StrEnum):
    """Pixel space a rectangle is expressed in."""

    FULL_SIZE = "full_size"
    SCALED = "scaled"
    CROPPED_SCALED = "cropped_scaled"
    CROPPED_FULL_SIZE = "cropped_full_size"


# Region-relative space -> absolute space it is translated into
_ABSOLUTE_SPACES = {
    CoordinateSpace.CROPPED_SCALED: CoordinateSpace.SCALED,
    CoordinateSpace.CROPPED_FULL_SIZE: CoordinateSpace.FULL_SIZE,
}


def scale_position(value: int, ratio: float) -> int:
    """Scale a coordinate, rounding like OpenCV does."""
    return round(value * ratio)


def scale_length(value: int, ratio: float) -> int:
    """Scale a width or height. Never collapses a positive length to zero."""
    if value <= 0:
        return 0
    return max(1, round(value * ratio))


def scale_span(start: int, length: int, ratio: float) -> tuple[int, int]:
    """Scale the span [start, start + length) by rounding both of its edges.

    Returns the scaled (start, length). A positive span that collapses keeps
    one pixel, taken left of the scaled end so it never grows past it.
    """
    if length <= 0:
        return scale_position(start, ratio), 0
    begin = scale_position(start, ratio)
    end = scale_position(start + length, ratio)
    if end <= begin:
        begin = max(0, end - 1)
        end = begin + 1
    return begin, end - begin


def unscale(value: int, ratio: float) -> int:
    """Map a scaled coordinate or length back to full size."""
    return round(value / ratio)


@dataclass(frozen=True)
class Size:
    """Width and height of a buffer, in pixels."""

    width: int
    height: int

    @property
    def area(self) -> int:
        """Number of pixels covered."""
        return max(0, self.width) * max(0, self.height)

    def fits_in(self, other: Size) -> bool:
        """Return True if this size is no larger than `other` in both dimensions."""
        return self.width <= other.width and self.height <= other.height


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle tagged with its coordinate space."""

    x: int
    y: int
    width: int
    height: int
    space: CoordinateSpace = CoordinateSpace.FULL_SIZE

    @classmethod
    def from_size(
        cls,
        size: Size,
        space: CoordinateSpace = CoordinateSpace.FULL_SIZE,
    ) -> Rect:
        """Build the rectangle covering a whole buffer of the given size."""
        return cls(0, 0, size.width, size.height, space)

    @property
    def size(self) -> Size:
        """Return the rectangle dimensions."""
        return Size(self.width, self.height)

    @property
    def right(self) -> int:
        """Exclusive right edge."""
        return self.x + self.width

    @property
    def bottom(self) -> int:
        """Exclusive bottom edge."""
        return self.y + self.height

    @property
    def center_x(self) -> int:
        """Horizontal center, truncated toward the origin."""
        return self.x + self.width // 2

    @property
    def center_y(self) -> int:
        """Vertical center, truncated toward the origin."""
        return self.y + self.height // 2

    @property
    def is_empty(self) -> bool:
        """Return True when the rectangle covers no pixel."""
        return self.width <= 0 or self.height <= 0

    def to_scaled(self, ratio: float) -> Rect:
        """Convert a full-size rectangle (absolute or region-relative) to scaled space."""
        target = {
            CoordinateSpace.FULL_SIZE: CoordinateSpace.SCALED,
            CoordinateSpace.CROPPED_FULL_SIZE: CoordinateSpace.CROPPED_SCALED,
        }.get(self.space)
        if target is None:
            msg = f"Cannot scale a rectangle already in {self.space} space"
            raise ValueError(msg)
        x, width = scale_span(self.x, self.width, ratio)
        y, height = scale_span(self.y, self.height, ratio)
        return Rect(x, y, width, height, target)

    def to_full_size(self, ratio: float) -> Rect:
        """Convert a scaled rectangle (absolute or region-relative) back to full size."""
        target = {
            CoordinateSpace.SCALED: CoordinateSpace.FULL_SIZE,
            CoordinateSpace.CROPPED_SCALED: CoordinateSpace.CROPPED_FULL_SIZE,
        }.get(self.space)
        if target is None:
            msg = f"Cannot unscale a rectangle in {self.space} space"
            raise ValueError(msg)
        return Rect(
            unscale(self.x, ratio),
            unscale(self.y, ratio),
            unscale(self.width, ratio),
            unscale(self.height, ratio),
            target,
        )

    def translate(self, origin: Rect) -> Rect:
        """Move a region-relative rectangle into the absolute space of `origin`."""
        target = _ABSOLUTE_SPACES.get(self.space)
        if target is None or origin.space != target:
            msg = f"Cannot translate {self.space} rectangle by a {origin.space} origin"
            raise ValueError(msg)
        return Rect(
            self.x + origin.x,
            self.y + origin.y,
            self.width,
            self.height,
            target,
        )

    def contains(self, other: Rect) -> bool:
        """Return True if `other` lies entirely within this rectangle."""
        self._check_same_space(other)
        if other.is_empty:
            return False
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )

    def intersection(self, other: Rect) -> Rect | None:
        """Return the overlapping part of both rectangles, or None when disjoint."""
        self._check_same_space(other)
        x1, y1 = max(self.x, other.x), max(self.y, other.y)
        x2, y2 = min(self.right, other.right), min(self.bottom, other.bottom)
        if x2 <= x1 or y2 <= y1:
            return None
        return Rect(x1, y1, x2 - x1, y2 - y1, self.space)

    def _check_same_space(self, other: Rect) -> None:
        if other.space != self.space:
            msg = f"Rectangles are in different spaces: {self.space} / {other.space}"
            raise ValueError(msg)
