"""
Error types raised by the DP engine.
"""


class DPEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(DPEngineError):
    """A pixel-space conversion was requested without loaded image dimensions."""


class CalibrationError(DPEngineError):
    """The reference card quadrilateral is missing or degenerate."""


class DetectionError(DPEngineError):
    """Landmark detection could not produce two iris centers."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InputError(DPEngineError, ValueError):
    """The caller supplied too few points (or otherwise unusable input)."""


# Detection failure reasons shown to the user
REASON_NO_IMAGE = "no image loaded"
REASON_BUSY = "detection already running"
REASON_MODEL_UNAVAILABLE = "model unavailable"
REASON_NO_SUBJECT = "no subject detected"
REASON_NO_LANDMARKS = "landmarks not extractable"
REASON_BAD_IMAGE = "image could not be prepared"
