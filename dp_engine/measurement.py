"""
Measurement Module - Distance Between the Two Landmarks

The first two canvas points are mapped back to original-image pixels (where
the scale is defined) before measuring, so the result does not depend on how
large the image is drawn.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from .coordinates import CanvasPoint, CoordinateSpace
from .errors import InputError


@dataclass(frozen=True)
class Measurement:
    """Distance between point 1 and point 2."""
    pixel_distance: float  # original-image pixels
    dp_mm: Optional[float] = None
    scale_mm_per_px: Optional[float] = None

    @property
    def calibrated(self) -> bool:
        return self.dp_mm is not None

    def describe(self) -> str:
        """Human-readable result line."""
        if self.calibrated:
            return f"DP (interpupillary): {self.dp_mm:.2f} mm"
        return (
            f"Pixel distance: {self.pixel_distance:.2f} px "
            "(uncalibrated: detect the card to convert to mm)"
        )


def measure(
    points: Sequence[CanvasPoint],
    space: CoordinateSpace,
    scale: Optional[float] = None
) -> Measurement:
    """
    Measure DP from the first two points.

    Args:
        points: Marked points in display-canvas space
        space: Coordinate space of the loaded image
        scale: mm per original-image pixel, or None when uncalibrated

    Returns:
        Measurement (``dp_mm`` is None without a scale)

    Raises:
        InputError: fewer than 2 points
        ConfigurationError: no image loaded
    """
    if len(points) < 2:
        raise InputError("insufficient points")

    p1 = space.canvas_to_original(points[0])
    p2 = space.canvas_to_original(points[1])
    pixel_distance = p1.distance_to(p2)

    if scale is None:
        return Measurement(pixel_distance=pixel_distance)

    return Measurement(
        pixel_distance=pixel_distance,
        dp_mm=pixel_distance * scale,
        scale_mm_per_px=scale,
    )
