"""Tests for the ConditionDetector orchestration.

Covers:
- the end-to-end visual match on a 1920x1080 frame
- region validation and early rejections, always delivered to the sink
- threshold bar and color verification in the search loop
- termination when every candidate is rejected
- the OCR path retry cap and error handling
- lifecycle (initialize / release / context manager)
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import pytesseract
from conftest import FakeRecognizer, MapEngine

from condition_detection.correlation import CorrelationSearch, compute_correlation_map
from condition_detection.detector import (
    ConditionDetector,
    DetectionFailure,
    DetectionResult,
    color_difference,
    threshold_bar,
)
from condition_detection.geometry import CoordinateSpace, Rect
from condition_detection.settings import DetectorSettings


def _detector(engine=None, settings=None, recognizer=None):
    detector = ConditionDetector(
        settings=settings,
        correlation_search=CorrelationSearch(engine) if engine else None,
    )
    sink = MagicMock()
    detector.initialize(result_sink=sink, recognizer=recognizer or FakeRecognizer())
    return detector, sink


def _load(detector, screen, quality):
    detector.set_screen_metrics("test", screen, quality)
    detector.set_screen_image(screen)


class TestHelpers:
    """Pure scoring helpers."""

    def test_threshold_bar(self):
        assert threshold_bar(80) == pytest.approx(0.2)
        assert threshold_bar(0) == 1.0
        assert threshold_bar(100) == 0.0

    def test_color_difference(self):
        red = np.zeros((4, 4, 3), np.uint8)
        red[:] = (0, 0, 255)
        green = np.zeros((4, 4, 3), np.uint8)
        green[:] = (0, 255, 0)
        assert color_difference(red, red) == 0
        assert color_difference(red, green) == pytest.approx(510 * 100 / 765)
        assert color_difference(np.zeros((2, 2, 3), np.uint8), np.full((3, 3, 3), 255, np.uint8)) == 100


class TestVisualMatch:
    """Correlation + color verification path."""

    def test_end_to_end(self, noise_screen):
        detector, sink = _detector()
        ratio = detector.set_screen_metrics("phone", noise_screen, 480)
        assert ratio == pytest.approx(0.25)
        detector.set_screen_image(noise_screen)
        assert detector.screen_image.scaled_size.width == 480
        assert detector.screen_image.scaled_size.height == 270

        condition = noise_screen[400:450, 800:850].copy()
        result = detector.detect_condition(condition, threshold=80)

        assert result.found
        assert result.failure is None
        assert result.x == pytest.approx(825, abs=2)
        assert result.y == pytest.approx(425, abs=2)
        assert result.confidence >= 0.96
        sink.assert_called_once_with(result)

    def test_match_inside_region(self, noise_screen):
        detector, _ = _detector()
        _load(detector, noise_screen, 480)

        condition = noise_screen[400:450, 800:850].copy()
        result = detector.detect_condition(condition, Rect(700, 300, 300, 250), threshold=80)

        assert result.found
        assert (result.x, result.y) == (825, 425)

    def test_absent_condition_is_not_found(self, noise_screen):
        detector, sink = _detector()
        _load(detector, noise_screen, 480)

        rng = np.random.default_rng(99)
        condition = rng.integers(0, 256, (50, 50, 3), dtype=np.uint8)
        result = detector.detect_condition(condition, threshold=10)

        assert not result.found
        assert result.failure == DetectionFailure.NO_CANDIDATE_ABOVE_THRESHOLD
        assert result.confidence is not None
        assert result.confidence <= threshold_bar(10)
        sink.assert_called_once_with(result)

    def test_color_mismatch_moves_to_next_candidate(self):
        screen = np.zeros((200, 400, 3), np.uint8)
        screen[10:30, 10:30] = (0, 0, 255)
        screen[50:70, 100:120] = (0, 255, 0)
        condition = np.zeros((20, 20, 3), np.uint8)
        condition[:] = (0, 255, 0)

        engine = MapEngine(peaks={(10, 10): 0.99, (100, 50): 0.95})
        detector, _ = _detector(engine)
        _load(detector, screen, 400)
        assert detector.screen_image.scale_ratio == 1.0

        result = detector.detect_condition(condition, threshold=20)

        assert result.found
        assert (result.x, result.y) == (110, 60)
        assert result.confidence == pytest.approx(0.95, abs=1e-6)
        assert detector.last_stat.items_found == 2

    def test_score_at_bar_is_never_accepted(self, gray_screen):
        condition = gray_screen[0:10, 0:10].copy()
        detector, _ = _detector(MapEngine(peaks={(5, 5): 0.5}))
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(condition, threshold=50)

        assert not result.found
        assert result.failure == DetectionFailure.NO_CANDIDATE_ABOVE_THRESHOLD

    def test_score_above_bar_is_accepted(self, gray_screen):
        condition = gray_screen[0:10, 0:10].copy()
        detector, _ = _detector(MapEngine(peaks={(5, 5): 0.51}))
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(condition, threshold=50)

        assert result.found
        assert (result.x, result.y) == (10, 10)

    def test_search_terminates_when_every_candidate_fails_color(self):
        screen = np.zeros((100, 100, 3), np.uint8)
        screen[:] = (0, 0, 255)
        condition = np.zeros((20, 20, 3), np.uint8)
        condition[:] = (0, 255, 0)

        detector, sink = _detector(MapEngine(fill=0.99))
        _load(detector, screen, 100)

        result = detector.detect_condition(condition, threshold=20)

        assert not result.found
        assert result.failure == DetectionFailure.CANDIDATES_EXHAUSTED
        search = detector.matching_results
        assert 0 < search.visited <= search.cell_count
        sink.assert_called_once_with(result)

    def test_locate_calls_never_exceed_cell_count(self):
        screen = np.zeros((10, 10, 3), np.uint8)
        screen[:] = (0, 0, 255)
        condition = np.zeros((1, 1, 3), np.uint8)
        condition[:] = (0, 255, 0)

        detector, sink = _detector(MapEngine(fill=0.99))
        _load(detector, screen, 100)
        search = detector.matching_results

        with patch.object(search, "locate_next_max", wraps=search.locate_next_max) as locate:
            result = detector.detect_condition(condition, threshold=20)

        assert result.failure == DetectionFailure.CANDIDATES_EXHAUSTED
        assert search.cell_count == 100
        assert locate.call_count == 100
        assert detector.last_stat.items_found == 100
        sink.assert_called_once_with(result)


class TestRejections:
    """Early rejections resolve to not-found results."""

    def test_region_outside_screen_skips_correlation(self, noise_screen):
        engine = MagicMock(side_effect=compute_correlation_map)
        detector, sink = _detector(engine)
        _load(detector, noise_screen, 480)

        result = detector.detect_condition(
            noise_screen[0:50, 0:50].copy(),
            Rect(1900, 0, 100, 100),
            threshold=80,
        )

        assert result == DetectionResult.rejected(DetectionFailure.INVALID_REGION)
        assert result.x is None
        engine.assert_not_called()
        sink.assert_called_once_with(result)

    def test_edge_touching_regions_are_accepted(self):
        screen = np.full((2400, 1080, 3), 128, np.uint8)
        condition = screen[0:20, 0:20].copy()
        detector, _ = _detector(MapEngine(peaks={(10, 10): 0.99}))
        _load(detector, screen, 700)
        assert detector.screen_image.scaled_size.width == 315

        for x in range(40):
            result = detector.detect_condition(condition, Rect(x, 0, 1080 - x, 2400), threshold=20)
            assert result.found, (x, result.failure)

    @pytest.mark.parametrize("shape", [(0, 0, 3), (0, 20, 3), (20, 0), (0, 0, 4)])
    def test_empty_condition_is_rejected(self, noise_screen, shape):
        detector, sink = _detector()
        _load(detector, noise_screen, 480)

        result = detector.detect_condition(np.zeros(shape, np.uint8), threshold=50)

        assert result == DetectionResult.rejected(DetectionFailure.EMPTY_CONDITION)
        sink.assert_called_once_with(result)

    def test_region_in_wrong_space_is_a_caller_error(self, noise_screen):
        detector, _ = _detector()
        _load(detector, noise_screen, 480)
        with pytest.raises(ValueError, match="full-size"):
            detector.detect_condition(
                noise_screen[0:50, 0:50].copy(),
                Rect(0, 0, 100, 100, CoordinateSpace.SCALED),
                threshold=80,
            )

    def test_condition_larger_than_region(self, noise_screen):
        detector, sink = _detector()
        _load(detector, noise_screen, 480)

        result = detector.detect_condition(
            noise_screen[0:50, 0:50].copy(),
            Rect(0, 0, 40, 40),
            threshold=80,
        )

        assert result.failure == DetectionFailure.CONDITION_TOO_LARGE
        sink.assert_called_once_with(result)

    def test_no_screen_image(self):
        detector, sink = _detector()
        result = detector.detect_condition(np.zeros((5, 5, 3), np.uint8), threshold=50)
        assert result.failure == DetectionFailure.NO_SCREEN_IMAGE
        sink.assert_called_once_with(result)

    def test_degenerate_scale(self, gray_screen):
        detector, sink = _detector()
        detector.set_screen_metrics("broken", np.zeros((0, 0, 3), np.uint8), 480)

        result = detector.detect_condition(gray_screen[0:5, 0:5].copy(), threshold=50)

        assert result.failure == DetectionFailure.DEGENERATE_SCALE
        sink.assert_called_once_with(result)

    def test_screen_size_change_recomputes_ratio(self, noise_screen):
        detector, _ = _detector()
        detector.set_screen_metrics("test", noise_screen, 480)
        detector.set_screen_image(noise_screen[:540, :960].copy())
        assert detector.screen_image.scale_ratio == pytest.approx(0.5)

    @pytest.mark.parametrize(
        "kwargs",
        [{}, {"threshold": 50, "target_text": "x"}, {"threshold": 101}, {"threshold": -1}, {"target_text": ""}],
    )
    def test_invalid_arguments(self, gray_screen, kwargs):
        detector, sink = _detector()
        _load(detector, gray_screen, 100)
        with pytest.raises(ValueError):
            detector.detect_condition(gray_screen[0:5, 0:5].copy(), **kwargs)
        sink.assert_not_called()

    def test_log_callback_receives_rejections(self, noise_screen):
        callback = MagicMock()
        detector = ConditionDetector(log_callback=callback)
        detector.initialize(recognizer=FakeRecognizer())
        _load(detector, noise_screen, 480)

        detector.detect_condition(noise_screen[0:50, 0:50].copy(), Rect(1900, 0, 100, 100), threshold=80)

        levels = [c.args[1] for c in callback.call_args_list]
        assert "ERROR" in levels


class TestTextMatch:
    """OCR-confirmed path."""

    def test_retry_cap_is_exactly_one_hundred(self, gray_screen):
        recognizer = FakeRecognizer(default="nothing here")
        detector, sink = _detector(MapEngine(fill=0.9), recognizer=recognizer)
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(gray_screen[0:5, 0:5].copy(), target_text="Start")

        assert not result.found
        assert result.failure == DetectionFailure.RETRY_BUDGET_EXHAUSTED
        assert result.x is None
        assert len(recognizer.images) == 100
        sink.assert_called_once_with(result)

    def test_found_on_third_attempt(self, gray_screen):
        recognizer = FakeRecognizer(texts=["", "Stop", "Press Start now"])
        detector, _ = _detector(MapEngine(fill=0.9), recognizer=recognizer)
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(gray_screen[0:5, 0:5].copy(), target_text="Start")

        assert result.found
        assert result.confidence == pytest.approx(0.9)
        assert len(recognizer.images) == 3

    def test_ocr_reads_candidate_area(self, gray_screen):
        recognizer = FakeRecognizer(texts=["ok"])
        detector, _ = _detector(MapEngine(peaks={(30, 40): 0.8}), recognizer=recognizer)
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(gray_screen[0:5, 0:5].copy(), target_text="ok")

        assert result.found
        assert (result.x, result.y) == (32, 42)
        assert recognizer.images[0].shape == (5, 5, 3)

    def test_ocr_reads_whole_screen_when_configured(self, gray_screen):
        recognizer = FakeRecognizer(texts=["ok"])
        detector, _ = _detector(
            MapEngine(fill=0.5),
            settings=DetectorSettings(ocr_area="screen"),
            recognizer=recognizer,
        )
        _load(detector, gray_screen, 100)

        detector.detect_condition(gray_screen[0:5, 0:5].copy(), target_text="ok")

        assert recognizer.images[0].shape == (100, 100, 3)

    def test_recognition_errors_count_as_attempts(self, gray_screen):
        from condition_detection.errors import TextRecognitionError

        recognizer = MagicMock()
        recognizer.extract_text.side_effect = TextRecognitionError("timeout")
        detector, _ = _detector(
            MapEngine(fill=0.9),
            settings=DetectorSettings(max_ocr_attempts=5),
            recognizer=recognizer,
        )
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(gray_screen[0:5, 0:5].copy(), target_text="x")

        assert result.failure == DetectionFailure.RETRY_BUDGET_EXHAUSTED
        assert recognizer.extract_text.call_count == 5

    def test_candidates_exhausted_before_cap(self, gray_screen):
        recognizer = FakeRecognizer()
        detector, _ = _detector(MapEngine(fill=0.9), recognizer=recognizer)
        _load(detector, gray_screen, 100)

        # 60x60 condition in a 100x100 frame: few suppression blocks fit.
        result = detector.detect_condition(gray_screen[0:60, 0:60].copy(), target_text="x")

        assert result.failure == DetectionFailure.CANDIDATES_EXHAUSTED
        assert 0 < len(recognizer.images) < 100

    def test_without_ocr_engine(self, gray_screen):
        detector = ConditionDetector(correlation_search=CorrelationSearch(MapEngine(fill=0.9)))
        _load(detector, gray_screen, 100)

        result = detector.detect_condition(gray_screen[0:5, 0:5].copy(), target_text="x")

        assert result.failure == DetectionFailure.OCR_UNAVAILABLE


class TestLifecycle:
    """initialize / release."""

    def test_release_is_idempotent(self):
        recognizer = FakeRecognizer()
        detector = ConditionDetector()
        detector.initialize(result_sink=MagicMock(), recognizer=recognizer)

        detector.release()
        detector.release()

        assert recognizer.ended == 1
        assert detector.result_sink is None
        assert detector.recognizer is None

    def test_missing_tesseract_disables_text_detection(self):
        with patch(
            "condition_detection.text_recognition.pytesseract.get_tesseract_version",
            side_effect=pytesseract.TesseractNotFoundError(),
        ):
            detector = ConditionDetector()
            detector.initialize()
        assert detector.recognizer is None

    def test_context_manager_opens_tesseract(self):
        with patch(
            "condition_detection.text_recognition.pytesseract.get_tesseract_version",
            return_value="5.3.0",
        ):
            with ConditionDetector() as detector:
                assert detector.recognizer is not None
                assert detector.recognizer.is_open
        assert detector.recognizer is None
