"""Image buffers used by the detector at full and scaled resolution."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

import cv2
import numpy as np
from PIL import Image

from condition_detection.errors import StaleCropError
from condition_detection.geometry import CoordinateSpace, Rect, Size, scale_length

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from condition_detection.detection_region import DetectionRegion

ImageSource: TypeAlias = "NDArray | Image.Image | Path | str"


def to_bgr(raw: ImageSource) -> NDArray:
    """Decode any supported image source into an 8-bit BGR array.

    Accepts OpenCV arrays (BGR, BGRA or single channel), PIL images as returned
    by screen grabbers, or a path to an image file.
    """
    if isinstance(raw, (str, Path)):
        img = cv2.imread(str(raw), cv2.IMREAD_COLOR)
        if img is None:
            msg = f"Failed to load image at {raw}"
            raise FileNotFoundError(msg)
        return img

    if isinstance(raw, Image.Image):
        rgb = np.asarray(raw.convert("RGB"), dtype=np.uint8)
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)

    arr = np.asarray(raw)
    if arr.dtype != np.uint8:
        msg = f"Expected an 8-bit image, got dtype {arr.dtype}"
        raise ValueError(msg)
    if arr.size == 0 and arr.ndim in (2, 3):
        return np.zeros((*arr.shape[:2], 3), dtype=np.uint8)
    if arr.ndim == 2:
        return cv2.cvtColor(arr, cv2.COLOR_GRAY2BGR)
    if arr.ndim == 3 and arr.shape[2] == 4:
        return cv2.cvtColor(arr, cv2.COLOR_BGRA2BGR)
    if arr.ndim == 3 and arr.shape[2] == 3:
        return arr
    msg = f"Unsupported image shape {arr.shape}"
    raise ValueError(msg)


class DetectionImage:
    """Hold one image as full-size color plus scaled color and gray buffers.

    Buffers are reused in place across ingestions of same-sized images, which
    is the common case when polling a live screen. Every ingestion bumps
    `generation`; crops taken under an older generation refuse to be read.
    """

    def __init__(self) -> None:
        """Create an empty image; nothing fits inside it until ingestion."""
        self.generation = 0
        self.scale_ratio = 0.0

        self.full_size = Size(0, 0)
        self.scaled_size = Size(0, 0)
        self.full_size_roi = Rect(0, 0, 0, 0, CoordinateSpace.FULL_SIZE)
        self.scaled_roi = Rect(0, 0, 0, 0, CoordinateSpace.SCALED)

        self._full_size_color: NDArray | None = None
        self._full_size_gray: NDArray | None = None
        self._scaled_color: NDArray | None = None
        self._scaled_gray: NDArray | None = None

        self._crop_generation = -1
        self._crop_scaled: Rect | None = None
        self._crop_full_size: Rect | None = None

    @property
    def is_loaded(self) -> bool:
        """Return True once an image has been ingested and not cleared."""
        return self._full_size_color is not None

    @property
    def full_size_color(self) -> NDArray:
        """Full resolution BGR buffer."""
        return self._require(self._full_size_color)

    @property
    def scaled_color(self) -> NDArray:
        """Scaled BGR buffer."""
        return self._require(self._scaled_color)

    @property
    def scaled_gray(self) -> NDArray:
        """Scaled grayscale buffer, the correlation input."""
        return self._require(self._scaled_gray)

    @property
    def full_size_gray(self) -> NDArray:
        """Full resolution grayscale, derived on first access after ingestion."""
        if self._full_size_gray is None:
            self._full_size_gray = cv2.cvtColor(
                self.full_size_color,
                cv2.COLOR_BGR2GRAY,
            )
        return self._full_size_gray

    def process_image(self, raw: ImageSource, scale_ratio: float) -> None:
        """Ingest a new image, replacing every buffer and invalidating crops."""
        if scale_ratio <= 0:
            msg = f"Scale ratio must be positive, got {scale_ratio}"
            raise ValueError(msg)

        bgr = to_bgr(raw)
        if bgr.size == 0:
            msg = f"Cannot ingest an empty image of shape {bgr.shape}"
            raise ValueError(msg)
        height, width = bgr.shape[:2]

        if self._full_size_color is not None and self._full_size_color.shape == bgr.shape:
            np.copyto(self._full_size_color, bgr)
        else:
            self._full_size_color = np.array(bgr, dtype=np.uint8, copy=True)

        self._scaled_color = self._resize(self._full_size_color, scale_ratio)
        self._scaled_gray = cv2.cvtColor(
            self._scaled_color,
            cv2.COLOR_BGR2GRAY,
            dst=self._reusable(self._scaled_gray, self._scaled_color.shape[:2]),
        )
        self._full_size_gray = None

        scaled_h, scaled_w = self._scaled_color.shape[:2]
        self.scale_ratio = scale_ratio
        self.full_size = Size(width, height)
        self.scaled_size = Size(scaled_w, scaled_h)
        self.full_size_roi = Rect.from_size(self.full_size, CoordinateSpace.FULL_SIZE)
        self.scaled_roi = Rect.from_size(self.scaled_size, CoordinateSpace.SCALED)
        self.generation += 1

    def clear(self) -> None:
        """Drop every buffer; containment checks fail until the next ingestion."""
        self._full_size_color = None
        self._full_size_gray = None
        self._scaled_color = None
        self._scaled_gray = None
        self.full_size = Size(0, 0)
        self.scaled_size = Size(0, 0)
        self.full_size_roi = Rect(0, 0, 0, 0, CoordinateSpace.FULL_SIZE)
        self.scaled_roi = Rect(0, 0, 0, 0, CoordinateSpace.SCALED)
        self.generation += 1

    def set_cropping(self, region: DetectionRegion) -> None:
        """Restrict the crop views to `region`, intersected with the image bounds."""
        self._crop_scaled = self.scaled_roi.intersection(region.scaled)
        self._crop_full_size = self.full_size_roi.intersection(region.full_size)
        self._crop_generation = self.generation

    @property
    def cropped_scaled_size(self) -> Size:
        """Size of the scaled crop; empty when no valid crop is set."""
        if self._crop_scaled is None or self._crop_generation != self.generation:
            return Size(0, 0)
        return self._crop_scaled.size

    @property
    def cropped_scaled_gray(self) -> NDArray:
        """View of the scaled gray buffer restricted to the crop."""
        rect = self._check_crop(self._crop_scaled)
        return self.scaled_gray[rect.y : rect.bottom, rect.x : rect.right]

    @property
    def cropped_full_size_color(self) -> NDArray:
        """View of the full-size color buffer restricted to the crop."""
        rect = self._check_crop(self._crop_full_size)
        return self.full_size_color[rect.y : rect.bottom, rect.x : rect.right]

    def full_size_color_at(self, rect: Rect) -> NDArray | None:
        """Return a view of the full-size color buffer clipped to `rect`."""
        clipped = self.full_size_roi.intersection(rect)
        if clipped is None:
            return None
        return self.full_size_color[clipped.y : clipped.bottom, clipped.x : clipped.right]

    def is_full_size_contains(self, rect: Rect) -> bool:
        """Return True if `rect` fits entirely in the full-size buffer."""
        return self.is_loaded and self.full_size_roi.contains(rect)

    def is_scaled_contains(self, rect: Rect) -> bool:
        """Return True if `rect` fits entirely in the scaled buffer."""
        return self.is_loaded and self.scaled_roi.contains(rect)

    def is_cropped_scaled_contains(self, size: Size) -> bool:
        """Return True if a buffer of `size` fits inside the current scaled crop."""
        crop = self.cropped_scaled_size
        return crop.area > 0 and size.area > 0 and size.fits_in(crop)

    def _resize(self, src: NDArray, ratio: float) -> NDArray:
        height, width = src.shape[:2]
        target = (scale_length(width, ratio), scale_length(height, ratio))
        dst = self._reusable(self._scaled_color, (target[1], target[0]), channels=3)

        if ratio == 1.0:
            if dst is None:
                return src.copy()
            np.copyto(dst, src)
            return dst

        # Let OpenCV derive the size from fx/fy so every scaled pixel covers the
        # same full-size area in the screen and in the condition.
        if (round(width * ratio), round(height * ratio)) == target:
            return cv2.resize(
                src,
                (0, 0),
                dst=dst,
                fx=ratio,
                fy=ratio,
                interpolation=cv2.INTER_AREA,
            )
        return cv2.resize(src, target, dst=dst, interpolation=cv2.INTER_AREA)

    @staticmethod
    def _reusable(
        buffer: NDArray | None,
        shape: tuple[int, int],
        channels: int | None = None,
    ) -> NDArray | None:
        expected = (*shape, channels) if channels else shape
        if buffer is not None and buffer.shape == expected:
            return buffer
        return None

    def _check_crop(self, rect: Rect | None) -> Rect:
        if self._crop_generation != self.generation:
            msg = "Crop was taken before the image was re-ingested"
            raise StaleCropError(msg)
        if rect is None:
            msg = "Crop does not overlap the image"
            raise ValueError(msg)
        return rect

    @staticmethod
    def _require(buffer: NDArray | None) -> NDArray:
        if buffer is None:
            msg = "No image has been ingested"
            raise ValueError(msg)
        return buffer
