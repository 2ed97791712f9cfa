"""Configuration constants for condition detection.

This file centralizes the limits used by the scaling pipeline, the candidate
search loop, and the text recognition path.
"""

# ============================================
# Scaling
# ============================================

# Bounds applied to the requested detection quality (longer scaled side, in px)
DETECTION_QUALITY_MIN = 100
DETECTION_QUALITY_MAX = 10000

# Ratio used before any screen metrics have been set
DEFAULT_SCALE_RATIO = 1.0

# Metrics tag used when the caller does not provide one
DEFAULT_METRICS_TAG = "default"


# ============================================
# Correlation Search
# ============================================

# Value written into visited map cells; below any TM_CCOEFF_NORMED score
SUPPRESSED_SCORE = -2.0


# ============================================
# Verification
# ============================================

THRESHOLD_MIN = 0
THRESHOLD_MAX = 100

# Color difference is reported on a 0-100 scale over the three BGR channels
COLOR_CHANNELS = 3
COLOR_CHANNEL_MAX = 255


# ============================================
# OCR
# ============================================

MAX_OCR_ATTEMPTS = 100

DEFAULT_OCR_LANG = "eng"
DEFAULT_OCR_PSM = 6
DEFAULT_OCR_TIMEOUT_S = 2.0

# Small crops are upscaled before binarization to help Tesseract on tiny fonts
OCR_UPSCALE_FACTOR = 2.0
OCR_UPSCALE_MAX_HEIGHT = 200

OCR_AREA_CANDIDATE = "candidate"
OCR_AREA_SCREEN = "screen"
OCR_AREAS = (OCR_AREA_CANDIDATE, OCR_AREA_SCREEN)


# ============================================
# Runner
# ============================================

DEFAULT_DETECTION_QUALITY = 600
DEFAULT_POLL_INTERVAL_S = 0.5
