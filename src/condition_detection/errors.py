"""Exceptions raised by the condition detection package."""


class ConditionDetectionError(Exception):
    """Base class for condition detection errors."""


class StaleCropError(ConditionDetectionError):
    """Raised when a crop view is read after its image was re-ingested."""


class TextRecognitionError(ConditionDetectionError):
    """Raised when the OCR engine fails to extract text from an image."""
