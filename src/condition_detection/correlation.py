"""Correlation map ownership and ranked candidate extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

import cv2
import numpy as np

from condition_detection.constants import SUPPRESSED_SCORE
from condition_detection.geometry import CoordinateSpace, Rect, Size, unscale

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# (haystack, needle, result buffer or None) -> score map
CorrelationEngine: TypeAlias = "Callable[[NDArray, NDArray, NDArray | None], NDArray]"


def compute_correlation_map(
    haystack: NDArray,
    needle: NDArray,
    result: NDArray | None = None,
) -> NDArray:
    """Compute the normalized correlation coefficient map of `needle` over `haystack`.

    Scores lie roughly in [-1, 1]; higher means better alignment. When `result`
    already has the right shape OpenCV writes into it instead of allocating.
    """
    return cv2.matchTemplate(haystack, needle, cv2.TM_CCOEFF_NORMED, result=result)


@dataclass(frozen=True)
class Candidate:
    """One proposed match location taken from the correlation map.

    `scaled` is relative to the scaled region origin and sized to the scaled
    condition; `full_size` is relative to the full-size region origin and sized
    to the full-size condition.
    """

    x: int
    y: int
    score: float
    scaled: Rect
    full_size: Rect


class CorrelationSearch:
    """Extract candidates from a correlation map in decreasing score order.

    Every located cell is suppressed together with a needle-sized neighbourhood
    around it, so each call makes progress and the number of candidates a
    single map can yield is bounded by its cell count.
    """

    def __init__(self, engine: CorrelationEngine | None = None) -> None:
        """Use OpenCV template matching unless another engine is injected."""
        self._engine: CorrelationEngine = engine or compute_correlation_map
        self._map: NDArray | None = None
        self.max_val = SUPPRESSED_SCORE
        self.last_candidate: Candidate | None = None
        self.visited = 0

    @property
    def results(self) -> NDArray | None:
        """The current correlation map, with visited cells suppressed."""
        return self._map

    @property
    def cell_count(self) -> int:
        """Number of alignments in the map; an upper bound on candidates."""
        return 0 if self._map is None else int(self._map.size)

    @property
    def is_exhausted(self) -> bool:
        """True once every cell of the map is suppressed."""
        return self._map is None or float(self._map.max()) <= SUPPRESSED_SCORE

    def reset(self) -> None:
        """Forget the candidates of the previous detection; the map buffer is kept."""
        self.max_val = SUPPRESSED_SCORE
        self.last_candidate = None
        self.visited = 0

    def init_results(self, haystack: NDArray, needle: NDArray) -> NDArray:
        """Run the correlation engine once for this detection and keep its map."""
        hay_h, hay_w = haystack.shape[:2]
        needle_h, needle_w = needle.shape[:2]
        expected = (hay_h - needle_h + 1, hay_w - needle_w + 1)

        reuse = (
            self._map
            if self._map is not None and self._map.shape == expected
            else None
        )
        scores = self._engine(haystack, needle, reuse)
        if scores.shape != expected:
            msg = f"Correlation map has shape {scores.shape}, expected {expected}"
            raise ValueError(msg)

        scores = np.asarray(scores, dtype=np.float32)
        # Flat areas can produce NaN/inf with normalized methods; never pick them.
        scores[~np.isfinite(scores)] = SUPPRESSED_SCORE

        self._map = scores
        self.reset()
        return scores

    def locate_next_max(
        self,
        scaled_size: Size,
        full_size: Size,
        scale_ratio: float,
    ) -> Candidate | None:
        """Return the best remaining candidate, or None once every cell was visited."""
        if self._map is None:
            msg = "init_results must be called before locating candidates"
            raise ValueError(msg)

        _, max_val, _, max_loc = cv2.minMaxLoc(self._map)
        if max_val <= SUPPRESSED_SCORE:
            return None

        x, y = max_loc
        candidate = Candidate(
            x=x,
            y=y,
            score=float(max_val),
            scaled=Rect(
                x,
                y,
                scaled_size.width,
                scaled_size.height,
                CoordinateSpace.CROPPED_SCALED,
            ),
            full_size=Rect(
                unscale(x, scale_ratio),
                unscale(y, scale_ratio),
                full_size.width,
                full_size.height,
                CoordinateSpace.CROPPED_FULL_SIZE,
            ),
        )
        self._suppress(self._map, x, y, scaled_size)

        self.max_val = candidate.score
        self.last_candidate = candidate
        self.visited += 1
        return candidate

    @staticmethod
    def _suppress(scores: NDArray, x: int, y: int, footprint: Size) -> None:
        """Push the peak and its needle-sized neighbourhood below any valid score."""
        map_h, map_w = scores.shape[:2]
        x0 = max(0, x - footprint.width // 2)
        y0 = max(0, y - footprint.height // 2)
        x1 = min(map_w, x0 + max(1, footprint.width))
        y1 = min(map_h, y0 + max(1, footprint.height))
        scores[y0:y1, x0:x1] = SUPPRESSED_SCORE
