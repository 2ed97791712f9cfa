"""Pytest configuration and shared fixtures for condition detection tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest

# src-layout: make the packages importable when running pytest from the repo root
src_dir = Path(__file__).resolve().parents[1] / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

if TYPE_CHECKING:
    import numpy.typing as npt


# =============================================================================
# Frame Fixtures
# =============================================================================

@pytest.fixture
def noise_screen() -> npt.NDArray[np.uint8]:
    """1920x1080 BGR noise frame; any 50x50 patch of it is unique."""
    rng = np.random.default_rng(1234)
    return rng.integers(0, 256, (1080, 1920, 3), dtype=np.uint8)


@pytest.fixture
def gray_screen() -> npt.NDArray[np.uint8]:
    """100x100 uniform gray BGR frame."""
    return np.full((100, 100, 3), 128, dtype=np.uint8)


# =============================================================================
# Collaborator Fakes
# =============================================================================

class FakeRecognizer:
    """Text recognizer returning scripted texts and recording every image."""

    def __init__(self, texts: list[str] | None = None, default: str = "") -> None:
        self.texts = list(texts or [])
        self.default = default
        self.images: list[npt.NDArray[np.uint8]] = []
        self.ended = 0

    def extract_text(self, image: npt.NDArray[np.uint8]) -> str:
        self.images.append(image)
        if self.texts:
            return self.texts.pop(0)
        return self.default

    def end(self) -> None:
        self.ended += 1


class MapEngine:
    """Correlation engine returning a map filled with `fill` plus chosen peaks."""

    def __init__(self, fill: float = 0.0, peaks: dict[tuple[int, int], float] | None = None) -> None:
        self.fill = fill
        self.peaks = peaks or {}
        self.calls = 0

    def __call__(self, haystack, needle, result=None):
        self.calls += 1
        shape = (
            haystack.shape[0] - needle.shape[0] + 1,
            haystack.shape[1] - needle.shape[1] + 1,
        )
        scores = np.full(shape, self.fill, dtype=np.float32)
        for (x, y), score in self.peaks.items():
            scores[y, x] = score
        return scores


@pytest.fixture
def fake_recognizer() -> FakeRecognizer:
    """Recognizer that never reads anything."""
    return FakeRecognizer()
