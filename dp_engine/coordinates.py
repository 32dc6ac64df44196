"""
Coordinate Spaces - Display Canvas, Original Image, Detector Input

Three pixel spaces share the same top-left origin, so every conversion
between them is a pure uniform scale:

    original --(display_ratio)--> canvas
    original --(detector_scale)--> detector input
    detector --(display_ratio / detector_scale)--> canvas

Points carry their space in their type. Passing a CanvasPoint where an
ImagePoint is expected raises TypeError instead of silently distorting the
measurement.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import ConfigurationError
from .utils import fit_ratio


@dataclass(frozen=True)
class _Point:
    x: float
    y: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def distance_to(self, other: "_Point") -> float:
        if type(other) is not type(self):
            raise TypeError(
                f"Cannot measure between {type(self).__name__} and {type(other).__name__}"
            )
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True)
class CanvasPoint(_Point):
    """Point in display-canvas pixels."""


@dataclass(frozen=True)
class ImagePoint(_Point):
    """Point in original (full-resolution) image pixels."""


@dataclass(frozen=True)
class DetectorPoint(_Point):
    """Point in pixels of the downscaled detector-input image."""


def _require(point, expected):
    if not isinstance(point, expected):
        raise TypeError(f"Expected {expected.__name__}, got {type(point).__name__}")


def _valid_ratio(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value) and value > 0


@dataclass(frozen=True)
class CoordinateSpace:
    """
    Scale factors linking the three pixel spaces of one loaded image.

    Attributes:
        display_ratio: display size / original size
        detector_scale: detector-input size / original size
        original_size: (width, height) of the original image, if known
    """
    display_ratio: Optional[float] = None
    detector_scale: Optional[float] = None
    original_size: Optional[Tuple[int, int]] = None

    @classmethod
    def unloaded(cls) -> "CoordinateSpace":
        """Space for a session with no image: every conversion fails."""
        return cls()

    @classmethod
    def for_image(
        cls,
        width: int,
        height: int,
        max_display_width: float,
        max_display_height: float,
        detector_max_side: float
    ) -> "CoordinateSpace":
        """
        Derive the canvas and detector scales for an image of the given size.

        Neither the canvas nor the detector input is ever upscaled.
        """
        return cls(
            display_ratio=fit_ratio(width, height, max_display_width, max_display_height),
            detector_scale=fit_ratio(width, height, detector_max_side, detector_max_side),
            original_size=(int(width), int(height)),
        )

    @property
    def is_loaded(self) -> bool:
        return _valid_ratio(self.display_ratio) and _valid_ratio(self.detector_scale)

    @property
    def display_size(self) -> Tuple[int, int]:
        w, h = self._require_size()
        r = self._ratio()
        return (max(1, round(w * r)), max(1, round(h * r)))

    @property
    def detector_size(self) -> Tuple[int, int]:
        w, h = self._require_size()
        s = self._detector_scale()
        return (max(1, round(w * s)), max(1, round(h * s)))

    def _require_size(self) -> Tuple[int, int]:
        if self.original_size is None:
            raise ConfigurationError("No image loaded: original size unknown")
        return self.original_size

    def _ratio(self) -> float:
        if not _valid_ratio(self.display_ratio):
            raise ConfigurationError(
                f"Invalid display ratio {self.display_ratio!r}: no image loaded?"
            )
        return self.display_ratio

    def _detector_scale(self) -> float:
        if not _valid_ratio(self.detector_scale):
            raise ConfigurationError(
                f"Invalid detector scale {self.detector_scale!r}: no image loaded?"
            )
        return self.detector_scale

    def detector_to_canvas_factor(self) -> float:
        return self._ratio() / self._detector_scale()

    # Canvas <-> original

    def canvas_to_original(self, point: CanvasPoint) -> ImagePoint:
        _require(point, CanvasPoint)
        r = self._ratio()
        return ImagePoint(point.x / r, point.y / r)

    def original_to_canvas(self, point: ImagePoint) -> CanvasPoint:
        _require(point, ImagePoint)
        r = self._ratio()
        return CanvasPoint(point.x * r, point.y * r)

    # Detector <-> canvas

    def detector_to_canvas(self, point: DetectorPoint) -> CanvasPoint:
        _require(point, DetectorPoint)
        factor = self.detector_to_canvas_factor()
        return CanvasPoint(point.x * factor, point.y * factor)

    def canvas_to_detector(self, point: CanvasPoint) -> DetectorPoint:
        _require(point, CanvasPoint)
        factor = self.detector_to_canvas_factor()
        return DetectorPoint(point.x / factor, point.y / factor)

    # Detector <-> original

    def detector_to_original(self, point: DetectorPoint) -> ImagePoint:
        _require(point, DetectorPoint)
        s = self._detector_scale()
        return ImagePoint(point.x / s, point.y / s)

    def original_to_detector(self, point: ImagePoint) -> DetectorPoint:
        _require(point, ImagePoint)
        s = self._detector_scale()
        return DetectorPoint(point.x * s, point.y * s)
