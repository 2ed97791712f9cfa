"""ConditionDetector.

Decides whether a condition image is visible inside the current screen frame.

Summary / Quickstart
--------------------
- `initialize(result_sink)` once, then `set_screen_metrics(tag, frame, quality)`
  whenever the display profile changes.
- Per frame: `set_screen_image(frame)`, then any number of
  `detect_condition(condition, region, threshold=...)` (visual match) or
  `detect_condition(condition, region, target_text=...)` (OCR-confirmed match).
- Every detection call returns a DetectionResult and also hands it to the
  result sink, including on early rejection (found=False).

Flow of one detection:
  ValidateRegion -> PrepareImages -> Correlate ->
  SearchLoop{Locate -> BoundsCheck -> ThresholdCheck -> ColorCheck | OCR} -> Emit

Correlation runs on scaled grayscale buffers; color verification and OCR run
on full-size color pixels; results are reported in full-size coordinates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Self, TypeAlias

import cv2

from condition_detection.constants import (
    COLOR_CHANNEL_MAX,
    COLOR_CHANNELS,
    OCR_AREA_SCREEN,
    THRESHOLD_MAX,
    THRESHOLD_MIN,
)
from condition_detection.correlation import Candidate, CorrelationSearch
from condition_detection.detection_image import DetectionImage, ImageSource, to_bgr
from condition_detection.detection_region import DetectionRegion
from condition_detection.errors import TextRecognitionError
from condition_detection.scaling import ScaleRatioManager
from condition_detection.settings import DetectorSettings
from condition_detection.text_recognition import TesseractTextRecognizer, TextRecognizer

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from numpy.typing import NDArray

    from condition_detection.geometry import Rect

logger = logging.getLogger(__name__)


class DetectionFailure(StrEnum):
    """Why a detection call reported found=False."""

    NO_SCREEN_IMAGE = "no_screen_image"
    DEGENERATE_SCALE = "degenerate_scale"
    INVALID_REGION = "invalid_region"
    CONDITION_TOO_LARGE = "condition_too_large"
    NO_CANDIDATE_ABOVE_THRESHOLD = "no_candidate_above_threshold"
    CANDIDATES_EXHAUSTED = "candidates_exhausted"
    SEARCH_LIMIT_REACHED = "search_limit_reached"
    RETRY_BUDGET_EXHAUSTED = "retry_budget_exhausted"
    OCR_UNAVAILABLE = "ocr_unavailable"
    EMPTY_CONDITION = "empty_condition"


@dataclass(frozen=True)
class DetectionResult:
    """Verdict of one detection call.

    x/y are the full-size center of the matched area. On a not-found verdict
    they hold the last candidate examined, or None when the call was rejected
    before any candidate was located.
    """

    found: bool
    x: int | None = None
    y: int | None = None
    confidence: float | None = None
    failure: DetectionFailure | None = None

    @classmethod
    def rejected(cls, failure: DetectionFailure) -> DetectionResult:
        """Build a not-found result without location."""
        return cls(found=False, failure=failure)


@dataclass
class PerfStat:
    """Store timing of the last detection call.

    `items_found` counts the candidates the search loop located, whether they
    were accepted or not.
    """

    name: str
    duration_ms: float
    items_found: int


ResultSink: TypeAlias = "Callable[[DetectionResult], None]"

# Receives (message, level) for UI display.
LogCallback: TypeAlias = "Callable[[str, str], None]"


def color_difference(image: NDArray, condition: NDArray) -> float:
    """Compare mean BGR colors of two images, on a 0 (same) to 100 scale."""
    image_means = cv2.mean(image)
    condition_means = cv2.mean(condition)
    diff = sum(abs(image_means[i] - condition_means[i]) for i in range(COLOR_CHANNELS))
    return (diff * 100) / (COLOR_CHANNEL_MAX * COLOR_CHANNELS)


def threshold_bar(threshold: int) -> float:
    """Correlation score a candidate must exceed for the given strictness."""
    return (100 - threshold) / 100


class ConditionDetector:
    """Detect condition images in screen frames by correlation and verification.

    A detector holds the current frame, region and correlation map; they are
    overwritten on every call, so one instance must only be used from one
    thread at a time.
    """

    def __init__(
        self,
        settings: DetectorSettings | None = None,
        correlation_search: CorrelationSearch | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        """Create an idle detector; call `initialize` before detecting text."""
        self.settings = settings or DetectorSettings()
        self.scale_ratio_manager = ScaleRatioManager()
        self.screen_image = DetectionImage()
        self.condition_image = DetectionImage()
        self.detection_region = DetectionRegion()
        self.matching_results = correlation_search or CorrelationSearch()

        self.result_sink: ResultSink | None = None
        self.recognizer: TextRecognizer | None = None
        self.log_callback = log_callback
        self.last_stat: PerfStat | None = None

    def __enter__(self) -> Self:
        """Initialize without a sink when used as a context manager."""
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Release the OCR engine."""
        self.release()

    # -------------------
    # Lifecycle
    # -------------------
    def initialize(
        self,
        result_sink: ResultSink | None = None,
        recognizer: TextRecognizer | None = None,
    ) -> None:
        """Bind the result sink and prepare the OCR engine.

        Without an explicit recognizer a Tesseract one is built from settings.
        A missing Tesseract install only disables text detection.
        """
        self.result_sink = result_sink
        if recognizer is None:
            tesseract = TesseractTextRecognizer(
                tesseract_path=self.settings.tesseract_path,
                lang=self.settings.ocr_lang,
                psm=self.settings.ocr_psm,
                timeout=self.settings.ocr_timeout,
            )
            try:
                tesseract.open()
                recognizer = tesseract
            except TextRecognitionError as e:
                self._log(f"Text detection disabled: {e}", "WARNING")
        self.recognizer = recognizer
        self._log("Initialized", "DEBUG")

    def release(self) -> None:
        """Release the OCR engine and unbind the sink. Safe to call twice."""
        if self.recognizer is not None:
            self.recognizer.end()
        self.recognizer = None
        self.result_sink = None
        self._log("Released", "DEBUG")

    # -------------------
    # Screen
    # -------------------
    def set_screen_metrics(
        self,
        tag: str,
        screen_image: ImageSource,
        quality: float,
    ) -> float:
        """Derive the scale ratio used for every following frame and condition."""
        height, width = to_bgr(screen_image).shape[:2]
        ratio = self.scale_ratio_manager.compute_scale_ratio(width, height, quality, tag)
        self._log(
            f"Screen metrics defined: FullSize=[{width}/{height}], "
            f"Quality={quality}, scaleRatio={ratio:.4f}",
        )
        return ratio

    def set_screen_image(self, screen_image: ImageSource) -> None:
        """Ingest the current frame at the active scale ratio."""
        bgr = to_bgr(screen_image)
        height, width = bgr.shape[:2]
        ratio = self.scale_ratio_manager.ensure_dimensions(width, height)
        if ratio <= 0:
            self._log(f"Degenerate scale ratio {ratio}, dropping screen image", "ERROR")
            self.screen_image.clear()
            return
        self.screen_image.process_image(bgr, ratio)

    # -------------------
    # Detection
    # -------------------
    def detect_condition(
        self,
        condition_image: ImageSource,
        region: Rect | None = None,
        *,
        threshold: int | None = None,
        target_text: str | None = None,
    ) -> DetectionResult:
        """Look for `condition_image` in the current frame.

        Args:
            condition_image: The reference image to find.
            region: Full-size area to search; the whole frame when None.
            threshold: Strictness 0-100 for the visual match. The correlation
                score must exceed (100 - threshold) / 100 and the color
                difference must stay below threshold.
            target_text: Text that must be read at the match location instead
                of the color check.

        """
        if (threshold is None) == (target_text is None):
            msg = "Provide exactly one of threshold or target_text"
            raise ValueError(msg)
        if threshold is not None and not THRESHOLD_MIN <= threshold <= THRESHOLD_MAX:
            msg = f"Threshold must be in [{THRESHOLD_MIN}, {THRESHOLD_MAX}], got {threshold}"
            raise ValueError(msg)
        if target_text is not None and not target_text:
            msg = "target_text must not be empty"
            raise ValueError(msg)

        t0 = time.time()
        self.matching_results.reset()
        result = self._detect(condition_image, region, threshold, target_text)
        self.last_stat = PerfStat(
            "threshold" if threshold is not None else "text",
            (time.time() - t0) * 1000,
            self.matching_results.visited,
        )
        self._emit(result)
        return result

    def _detect(
        self,
        condition_image: ImageSource,
        region: Rect | None,
        threshold: int | None,
        target_text: str | None,
    ) -> DetectionResult:
        if self.scale_ratio_manager.scale_ratio <= 0:
            self._log("Scale ratio is degenerate, skipping condition", "ERROR")
            return DetectionResult.rejected(DetectionFailure.DEGENERATE_SCALE)
        if not self.screen_image.is_loaded:
            self._log("No screen image, skipping condition", "ERROR")
            return DetectionResult.rejected(DetectionFailure.NO_SCREEN_IMAGE)
        if target_text is not None and self.recognizer is None:
            self._log("No OCR engine, skipping text condition", "ERROR")
            return DetectionResult.rejected(DetectionFailure.OCR_UNAVAILABLE)

        # The frame's own ratio wins over metrics set after it was ingested.
        ratio = self.screen_image.scale_ratio
        self.detection_region.set_full_size(
            region or self.screen_image.full_size_roi,
            ratio,
        )

        failure = self._prepare(condition_image, ratio)
        if failure is not None:
            return DetectionResult.rejected(failure)

        if threshold is not None:
            return self._match_threshold(threshold, ratio)
        return self._match_text(target_text or "", ratio)

    def _prepare(
        self,
        condition_image: ImageSource,
        ratio: float,
    ) -> DetectionFailure | None:
        """Validate the region, ingest the condition and compute the correlation map."""
        region = self.detection_region
        if not self.screen_image.is_full_size_contains(
            region.full_size,
        ) or not self.screen_image.is_scaled_contains(region.scaled):
            self._log(f"Detection ROI is invalid, skipping condition: {region}", "ERROR")
            return DetectionFailure.INVALID_REGION

        condition = to_bgr(condition_image)
        if condition.size == 0:
            self._log("Condition image is empty, skipping it", "ERROR")
            return DetectionFailure.EMPTY_CONDITION
        self.condition_image.process_image(condition, ratio)

        # The condition can't be found in an area smaller than itself.
        self.screen_image.set_cropping(region)
        if not self.screen_image.is_cropped_scaled_contains(
            self.condition_image.scaled_size,
        ):
            self._log("Condition is bigger than the detection area, skipping it", "ERROR")
            return DetectionFailure.CONDITION_TOO_LARGE

        self.matching_results.init_results(
            self.screen_image.cropped_scaled_gray,
            self.condition_image.scaled_gray,
        )
        return None

    def _match_threshold(self, threshold: int, ratio: float) -> DetectionResult:
        """Accept the best candidate above the bar whose colors also match."""
        bar = threshold_bar(threshold)

        # Suppression removes at least one cell per locate.
        for _ in range(self.matching_results.cell_count):
            candidate = self._locate_next(ratio)
            if candidate is None:
                return self._not_found(DetectionFailure.CANDIDATES_EXHAUSTED)

            if not self._is_in_bounds(candidate):
                logger.debug("Candidate (%d, %d) out of bounds", candidate.x, candidate.y)
                continue

            # Scores never increase across candidates: nothing left can pass.
            if candidate.score <= bar:
                self._log(
                    f"Best remaining score {candidate.score:.3f} is below {bar:.2f}",
                    "DEBUG",
                )
                return self._not_found(DetectionFailure.NO_CANDIDATE_ABOVE_THRESHOLD)

            diff = self._candidate_color_diff(candidate)
            if diff is not None and diff < threshold:
                return self._found(candidate)
            logger.debug(
                "Candidate (%d, %d) score=%.3f rejected on color diff %s",
                candidate.x,
                candidate.y,
                candidate.score,
                diff,
            )

        return self._search_ended()

    def _match_text(self, target_text: str, ratio: float) -> DetectionResult:
        """Accept the first in-bounds candidate whose area reads `target_text`."""
        attempts = 0
        max_attempts = self.settings.max_ocr_attempts

        for _ in range(self.matching_results.cell_count):
            candidate = self._locate_next(ratio)
            if candidate is None:
                return self._not_found(DetectionFailure.CANDIDATES_EXHAUSTED)

            if not self._is_in_bounds(candidate):
                logger.debug("Candidate (%d, %d) out of bounds", candidate.x, candidate.y)
                continue

            attempts += 1
            if target_text in self._read_text(candidate):
                return self._found(candidate)

            if attempts >= max_attempts:
                self._log(
                    f"No text match after {attempts} OCR attempts, giving up",
                    "ERROR",
                )
                return DetectionResult.rejected(DetectionFailure.RETRY_BUDGET_EXHAUSTED)

        return self._search_ended()

    def _locate_next(self, ratio: float) -> Candidate | None:
        return self.matching_results.locate_next_max(
            self.condition_image.scaled_size,
            self.condition_image.full_size,
            ratio,
        )

    def _search_ended(self) -> DetectionResult:
        """Verdict once the loop has located `cell_count` candidates."""
        if self.matching_results.is_exhausted:
            return self._not_found(DetectionFailure.CANDIDATES_EXHAUSTED)
        self._log("Candidate search hit its iteration limit", "ERROR")
        return self._not_found(DetectionFailure.SEARCH_LIMIT_REACHED)

    def _is_in_bounds(self, candidate: Candidate) -> bool:
        """Check the candidate's absolute scaled area against the screen."""
        scaled = candidate.scaled.translate(self.detection_region.scaled)
        return self.screen_image.is_scaled_contains(scaled)

    def _candidate_area(self, candidate: Candidate) -> NDArray | None:
        full_size = candidate.full_size.translate(self.detection_region.full_size)
        return self.screen_image.full_size_color_at(full_size)

    def _candidate_color_diff(self, candidate: Candidate) -> float | None:
        area = self._candidate_area(candidate)
        if area is None:
            return None
        return color_difference(area, self.condition_image.full_size_color)

    def _read_text(self, candidate: Candidate) -> str:
        if self.settings.ocr_area == OCR_AREA_SCREEN:
            image = self.screen_image.full_size_color
        else:
            image = self._candidate_area(candidate)
            if image is None:
                return ""

        if self.recognizer is None:
            return ""
        try:
            return self.recognizer.extract_text(image)
        except TextRecognitionError as e:
            self._log(f"OCR attempt failed: {e}", "WARNING")
            return ""

    def _found(self, candidate: Candidate) -> DetectionResult:
        region = self.detection_region.full_size
        return DetectionResult(
            found=True,
            x=region.x + candidate.full_size.center_x,
            y=region.y + candidate.full_size.center_y,
            confidence=candidate.score,
        )

    def _not_found(self, failure: DetectionFailure) -> DetectionResult:
        last = self.matching_results.last_candidate
        if last is None:
            return DetectionResult.rejected(failure)
        region = self.detection_region.full_size
        return DetectionResult(
            found=False,
            x=region.x + last.full_size.center_x,
            y=region.y + last.full_size.center_y,
            confidence=last.score,
            failure=failure,
        )

    def _emit(self, result: DetectionResult) -> None:
        if result.found:
            self._log(
                f"Condition found at ({result.x}, {result.y}), confidence={result.confidence:.3f}",
                "DEBUG",
            )
        if self.result_sink is not None:
            self.result_sink(result)

    def _log(self, msg: str, lvl: str = "INFO") -> None:
        """Log a message and forward it to the UI callback, if any."""
        logger.log(logging.getLevelName(lvl), msg)
        if self.log_callback:
            self.log_callback(msg, lvl)
