"""
Utility functions and constants for the DP measurement engine.
"""

from typing import Tuple

import cv2
import numpy as np


# Reference card: 10 x 10 cm square
CARD_MM = 100.0

# Maximum accepted long/short side ratio for card candidates
MAX_CARD_ASPECT = 1.6

# Display canvas limits used when an image is loaded
DISPLAY_MAX_WIDTH = 900
DISPLAY_MAX_HEIGHT = 700

# Longest side of the image handed to the landmark detector
DETECTOR_MAX_SIDE = 640

# Pointer sensitivity around a marked point (canvas pixels)
HIT_RADIUS_PX = 12.0

# MediaPipe Face Mesh iris landmark ranges (refined 478-point topology).
# Each iris is a center point followed by 4 boundary points.
LEFT_IRIS_SLICE = slice(468, 473)
RIGHT_IRIS_SLICE = slice(473, 478)


def fit_ratio(width: int, height: int, max_width: float, max_height: float) -> float:
    """
    Uniform scale that fits (width, height) inside a box without upscaling.

    Returns:
        min(max_width / width, max_height / height, 1)
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")
    return min(max_width / width, max_height / height, 1.0)


def preprocess_for_card_detection(image: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Preprocess image for card detection.

    Args:
        image: BGR (or already grayscale) input image

    Returns:
        Tuple of (grayscale, edges)
    """
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image

    # Gaussian blur 5x5, Canny 50/150
    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    edges = cv2.Canny(blurred, 50, 150)

    # Close small gaps in the card outline
    kernel = np.ones((3, 3), np.uint8)
    edges = cv2.dilate(edges, kernel)

    return gray, edges
