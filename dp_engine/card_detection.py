"""
Card Detection - Contour Search for the Square Reference Card

Pipeline (full-resolution image):
1. Grayscale + 5x5 Gaussian blur + Canny (50, 150)
2. 3x3 dilation to close gaps in the outline
3. Contours (RETR_LIST) approximated with approxPolyDP (2% of perimeter)
4. Keep convex 4-vertex polygons whose minAreaRect aspect is below 1.6

Candidates are returned in original-image pixel coordinates. Choosing among
them and deriving the scale is done by ``calibration.CardCalibration``.
"""

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from .utils import MAX_CARD_ASPECT, preprocess_for_card_detection

logger = logging.getLogger(__name__)


@dataclass
class CardCandidate:
    """Convex quadrilateral that may be the reference card."""
    corners: np.ndarray  # (4, 2) float32, contour order (unordered corners)
    area: float
    aspect: float


class CardDetector:
    """
    Finds square card candidates in an image.

    Args:
        max_aspect: Reject candidates whose long/short side ratio reaches this
        debug_dir: Directory to save intermediate images (None to disable)
    """

    def __init__(self, max_aspect: float = MAX_CARD_ASPECT, debug_dir: Optional[str] = None):
        self.max_aspect = max_aspect
        self.debug_dir = debug_dir

    def _save_debug(self, name: str, image: np.ndarray):
        """Save debug image if debug_dir is set."""
        if self.debug_dir:
            os.makedirs(self.debug_dir, exist_ok=True)
            path = os.path.join(self.debug_dir, f"card_{name}.jpg")
            cv2.imwrite(path, image)
            logger.debug("Saved %s", path)

    def find_candidates(self, image: np.ndarray) -> List[CardCandidate]:
        """
        Find convex quadrilateral candidates.

        Args:
            image: BGR or grayscale image at original resolution

        Returns:
            Candidates sorted by area, largest first
        """
        _, edges = preprocess_for_card_detection(image)
        self._save_debug("edges", edges)

        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

        candidates = []
        for contour in contours:
            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)

            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue

            (_, _), (w, h), _ = cv2.minAreaRect(approx)
            if min(w, h) <= 0:
                continue
            aspect = max(w, h) / min(w, h)
            if aspect >= self.max_aspect:
                continue

            candidates.append(CardCandidate(
                corners=approx.reshape(4, 2).astype(np.float32),
                area=float(cv2.contourArea(approx)),
                aspect=float(aspect),
            ))

        candidates.sort(key=lambda c: c.area, reverse=True)
        logger.info("Card search: %d contours, %d square candidates", len(contours), len(candidates))

        if self.debug_dir and candidates:
            viz = image.copy() if image.ndim == 3 else cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
            cv2.polylines(viz, [candidates[0].corners.astype(np.int32)], True, (0, 255, 0), 3)
            self._save_debug("best", viz)

        return candidates


def find_card_candidates(
    image: np.ndarray,
    max_aspect: float = MAX_CARD_ASPECT,
    debug_dir: Optional[str] = None
) -> List[CardCandidate]:
    """Convenience wrapper around ``CardDetector.find_candidates``."""
    return CardDetector(max_aspect=max_aspect, debug_dir=debug_dir).find_candidates(image)
