"""
DP (Interpupillary Distance) Measurement Engine

Measures the distance between pupil centers in a photo that contains a
100 mm square reference card.
"""

from .calibration import CardCalibration, CalibrationResult, resolve_quad
from .coordinates import CanvasPoint, CoordinateSpace, DetectorPoint, ImagePoint
from .detection import DetectionOrchestrator, DetectionOutcome, DetectionState
from .errors import (
    CalibrationError,
    ConfigurationError,
    DetectionError,
    DPEngineError,
    InputError,
)
from .measurement import Measurement, measure
from .points import PointStore
from .session import MeasurementSession

__version__ = "0.1.0"
__all__ = [
    "CardCalibration",
    "CalibrationResult",
    "resolve_quad",
    "CanvasPoint",
    "CoordinateSpace",
    "DetectorPoint",
    "ImagePoint",
    "DetectionOrchestrator",
    "DetectionOutcome",
    "DetectionState",
    "CalibrationError",
    "ConfigurationError",
    "DetectionError",
    "DPEngineError",
    "InputError",
    "Measurement",
    "measure",
    "PointStore",
    "MeasurementSession",
]
