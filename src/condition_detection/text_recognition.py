"""Text recognition backed by Tesseract, used to confirm text conditions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

import cv2
import pytesseract

from condition_detection.constants import (
    DEFAULT_OCR_LANG,
    DEFAULT_OCR_PSM,
    DEFAULT_OCR_TIMEOUT_S,
    OCR_UPSCALE_FACTOR,
    OCR_UPSCALE_MAX_HEIGHT,
)
from condition_detection.errors import TextRecognitionError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class TextRecognizer(Protocol):
    """Anything able to turn an image buffer into UTF-8 text."""

    def extract_text(self, image: NDArray) -> str:
        """Return the text found in `image`."""
        ...

    def end(self) -> None:
        """Release engine resources."""
        ...


class TesseractTextRecognizer:
    """Extract text with pytesseract after a binarization pass.

    Tesseract runs as a subprocess per call, so the recognizer itself is cheap;
    `open` only verifies that the executable can be found.
    """

    def __init__(
        self,
        tesseract_path: str | None = None,
        lang: str = DEFAULT_OCR_LANG,
        psm: int = DEFAULT_OCR_PSM,
        timeout: float = DEFAULT_OCR_TIMEOUT_S,
    ) -> None:
        """Configure the engine.

        Args:
            tesseract_path: Path to the tesseract executable; PATH lookup when None.
            lang: Tesseract language pack, e.g. "eng" or "chi_sim".
            psm: Page segmentation mode passed as `--psm`.
            timeout: Seconds before a single OCR call is abandoned.

        """
        if tesseract_path:
            pytesseract.pytesseract.tesseract_cmd = tesseract_path
        self.lang = lang
        self.psm = psm
        self.timeout = timeout
        self.is_open = False

    def open(self) -> str:
        """Check that Tesseract is reachable and return its version."""
        try:
            version = str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as e:
            msg = f"Tesseract executable not found: {e}"
            raise TextRecognitionError(msg) from e
        self.is_open = True
        logger.info("Tesseract %s ready (lang=%s, psm=%d)", version, self.lang, self.psm)
        return version

    def extract_text(self, image: NDArray) -> str:
        """Run OCR on `image` and return the raw recognized text."""
        proc = self.preprocess(image)
        try:
            return pytesseract.image_to_string(
                proc,
                lang=self.lang,
                config=f"--oem 3 --psm {self.psm}",
                timeout=self.timeout,
            )
        except (
            pytesseract.TesseractError,
            pytesseract.TesseractNotFoundError,
            RuntimeError,
        ) as e:
            # pytesseract reports timeouts as a bare RuntimeError.
            msg = f"OCR failed on {image.shape[1]}x{image.shape[0]} image: {e}"
            raise TextRecognitionError(msg) from e

    def end(self) -> None:
        """Mark the engine closed; there is no persistent process to stop."""
        self.is_open = False

    @staticmethod
    def preprocess(image: NDArray) -> NDArray:
        """Convert to gray, upscale small crops, then Otsu-binarize for Tesseract."""
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
        if gray.shape[0] < OCR_UPSCALE_MAX_HEIGHT:
            gray = cv2.resize(
                gray,
                (0, 0),
                fx=OCR_UPSCALE_FACTOR,
                fy=OCR_UPSCALE_FACTOR,
                interpolation=cv2.INTER_LINEAR,
            )
        _, thresh = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return thresh
