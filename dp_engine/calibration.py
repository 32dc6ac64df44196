"""
Calibration Module - Square Card Scale

Turns the 4 corners of the 100 mm reference card into a millimeter-per-pixel
scale in original-image space.

Corner ordering uses the sum/difference heuristic:
    TL = min(x + y)    BR = max(x + y)
    TR = min(y - x)    BL = max(y - x)

It is exact for convex quads close to axis-aligned. For strongly rotated
cards (around 45 degrees) two roles can resolve to the same vertex; that is a
known limitation and is not corrected here.
"""

import logging
import math
from dataclasses import dataclass
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from .card_detection import CardCandidate, find_card_candidates
from .coordinates import ImagePoint
from .errors import CalibrationError
from .utils import CARD_MM, MAX_CARD_ASPECT

logger = logging.getLogger(__name__)

Quad = Tuple[ImagePoint, ImagePoint, ImagePoint, ImagePoint]


def _as_array(points: Sequence) -> np.ndarray:
    coords = []
    for p in points:
        if isinstance(p, ImagePoint):
            coords.append((p.x, p.y))
        elif isinstance(p, (tuple, list, np.ndarray)) and len(p) >= 2:
            coords.append((float(p[0]), float(p[1])))
        else:
            raise CalibrationError(f"Not an image-space point: {p!r}")

    pts = np.asarray(coords, dtype=np.float64).reshape(-1, 2)
    if len(pts) != 4:
        raise CalibrationError(f"Card quadrilateral needs 4 corners, got {len(pts)}")
    if not np.all(np.isfinite(pts)):
        raise CalibrationError("Card corners contain non-finite coordinates")
    return pts


def order_quad_corners(points: Sequence) -> Quad:
    """
    Order 4 corners as [top-left, top-right, bottom-right, bottom-left].

    Args:
        points: 4 ImagePoints or (x, y) pairs in original-image pixels

    Returns:
        Tuple of 4 ImagePoints
    """
    pts = _as_array(points)
    s = pts.sum(axis=1)
    diff = np.diff(pts, axis=1).ravel()  # y - x

    tl = pts[np.argmin(s)]
    br = pts[np.argmax(s)]
    tr = pts[np.argmin(diff)]
    bl = pts[np.argmax(diff)]

    return tuple(ImagePoint(float(x), float(y)) for x, y in (tl, tr, br, bl))


def resolve_quad(points: Sequence, card_mm: float = CARD_MM) -> Tuple[Quad, float]:
    """
    Order the card corners and derive the scale.

    pixel_width is the mean of the top and bottom edge lengths.

    Returns:
        (quad, scale_mm_per_px)

    Raises:
        CalibrationError: degenerate input or non-positive pixel width
    """
    quad = order_quad_corners(points)
    tl, tr, br, bl = quad

    top_width = tl.distance_to(tr)
    bottom_width = bl.distance_to(br)
    pixel_width = (top_width + bottom_width) / 2.0

    if not math.isfinite(pixel_width) or pixel_width <= 0:
        raise CalibrationError(f"Degenerate card: pixel width {pixel_width:.3f}")

    return quad, card_mm / pixel_width


@dataclass
class CalibrationResult:
    """Result of a calibration attempt."""
    calibrated: bool
    quad: Optional[Quad] = None
    scale_mm_per_px: Optional[float] = None
    card_area_px: Optional[float] = None
    candidates: int = 0
    error_message: Optional[str] = None


class CardCalibration:
    """
    Owner of the card quadrilateral and the scale.

    This is the only place the scale is written. A failed attempt never
    overwrites a previous successful calibration.
    """

    def __init__(
        self,
        card_mm: float = CARD_MM,
        max_aspect: float = MAX_CARD_ASPECT,
        find_candidates: Optional[Callable[..., List[CardCandidate]]] = None,
        debug_dir: Optional[str] = None
    ):
        """
        Args:
            card_mm: Physical side length of the reference card
            max_aspect: Aspect filter handed to the contour search
            find_candidates: Contour-search callable (defaults to find_card_candidates)
            debug_dir: Directory for card-detection debug images
        """
        self.card_mm = card_mm
        if find_candidates is None:
            find_candidates = partial(find_card_candidates, max_aspect=max_aspect, debug_dir=debug_dir)
        self._find_candidates = find_candidates
        self._quad: Optional[Quad] = None
        self._scale: Optional[float] = None

    @property
    def scale(self) -> Optional[float]:
        """Millimeters per original-image pixel, or None if uncalibrated."""
        return self._scale

    @property
    def quad(self) -> Optional[Quad]:
        return self._quad

    @property
    def is_calibrated(self) -> bool:
        return self._scale is not None

    def calibrate(self, points: Sequence) -> CalibrationResult:
        """
        Calibrate from 4 card corners (original-image pixels).

        Raises:
            CalibrationError: if the corners are degenerate
        """
        quad, scale = resolve_quad(points, self.card_mm)
        self._quad = quad
        self._scale = scale
        logger.info("Card calibrated: %.6f mm/px", scale)
        return CalibrationResult(calibrated=True, quad=quad, scale_mm_per_px=scale)

    def detect(self, image: np.ndarray) -> CalibrationResult:
        """
        Search the image for the card and calibrate on the largest candidate.

        Args:
            image: Original-resolution BGR image

        Returns:
            CalibrationResult; ``calibrated`` is False when no usable card was found
        """
        candidates = self._find_candidates(image)
        if not candidates:
            logger.info("Card not detected")
            return CalibrationResult(
                calibrated=False,
                error_message="Card not detected. Improve lighting/contrast or mark the corners manually."
            )

        best = max(candidates, key=lambda c: c.area)
        try:
            result = self.calibrate(best.corners)
        except CalibrationError as e:
            logger.warning("Card candidate rejected: %s", e)
            return CalibrationResult(
                calibrated=False,
                candidates=len(candidates),
                error_message=str(e)
            )

        result.card_area_px = best.area
        result.candidates = len(candidates)
        return result

    def reset(self):
        """Forget the card and the scale."""
        self._quad = None
        self._scale = None
