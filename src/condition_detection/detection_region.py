"""Detection region expressed in both full-size and scaled coordinates."""

from __future__ import annotations

from condition_detection.geometry import CoordinateSpace, Rect


class DetectionRegion:
    """Rectangle of the screen to search, in full-size and scaled space."""

    def __init__(self) -> None:
        """Start empty; `set_full_size` must run before each detection."""
        self.full_size = Rect(0, 0, 0, 0, CoordinateSpace.FULL_SIZE)
        self.scaled = Rect(0, 0, 0, 0, CoordinateSpace.SCALED)

    def set_full_size(self, rect: Rect, scale_ratio: float) -> None:
        """Set the full-size rectangle and derive its scaled counterpart."""
        if rect.space != CoordinateSpace.FULL_SIZE:
            msg = f"Detection region must be given in full-size space, got {rect.space}"
            raise ValueError(msg)
        self.full_size = rect
        self.scaled = rect.to_scaled(scale_ratio)

    def __repr__(self) -> str:
        """Show both spaces, handy in log lines."""
        f, s = self.full_size, self.scaled
        return (
            f"DetectionRegion(full=[{f.x},{f.y} {f.width}x{f.height}], "
            f"scaled=[{s.x},{s.y} {s.width}x{s.height}])"
        )
