"""Poll the live screen until a condition image (or its text) shows up."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from condition_detection.detection_image import to_bgr
from condition_detection.detector import ConditionDetector, DetectionResult
from condition_detection.settings import (
    DetectorSettings,
    WatchSettings,
    load_settings,
    load_watch_settings,
)
from screenshot_service import ScreenshotService

if TYPE_CHECKING:
    from numpy.typing import NDArray


class ConditionWatch:
    """Capture frames and run one detection per frame until a match or the poll limit."""

    def __init__(self, settings: DetectorSettings, watch: WatchSettings) -> None:
        """Load the condition image once and build the detector."""
        self.settings = settings
        self.watch = watch
        self.ss = ScreenshotService()
        self.detector = ConditionDetector(settings)
        self.condition: NDArray = to_bgr(watch.condition_image)

    def poll_once(self) -> DetectionResult:
        """Grab the current frame and look for the condition in it."""
        self.detector.set_screen_image(self.ss.capture_frame())
        return self.detector.detect_condition(
            self.condition,
            self.watch.region,
            threshold=self.watch.threshold,
            target_text=self.watch.target_text,
        )

    def run(self) -> DetectionResult | None:
        """Poll until the condition is found; return the matching result."""
        self.detector.initialize(result_sink=self._report)
        try:
            self.detector.set_screen_metrics(
                self.settings.metrics_tag,
                self.ss.capture_frame(),
                self.settings.detection_quality,
            )
            polls = 0
            while self.watch.max_polls is None or polls < self.watch.max_polls:
                result = self.poll_once()
                polls += 1
                if result.found:
                    return result
                time.sleep(self.watch.poll_interval)
            print(f"[INFO] Condition not found after {polls} polls.")
        except KeyboardInterrupt:
            print("\n[INFO] Interrupted.")
        finally:
            self.detector.release()
        return None

    def _report(self, result: DetectionResult) -> None:
        stat = self.detector.last_stat
        timing = f" in {stat.duration_ms:.0f}ms ({stat.items_found} candidates located)" if stat else ""
        if result.found:
            print(
                f"[TARGET] Found at ({result.x}, {result.y}) "
                f"confidence={result.confidence:.3f}{timing}",
            )
        else:
            print(f"[MISS] {result.failure}{timing}")


def run() -> None:
    """Run the condition watcher configured from the environment."""
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ConditionWatch(settings, load_watch_settings()).run()


if __name__ == "__main__":
    run()
