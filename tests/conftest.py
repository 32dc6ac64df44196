import cv2
import numpy as np
import pytest

from dp_engine.config import Settings
from dp_engine.coordinates import CoordinateSpace


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def image():
    """800x600 black frame: canvas ratio 1.0, detector scale 0.8."""
    return np.zeros((600, 800, 3), dtype=np.uint8)


@pytest.fixture
def card_image():
    """800x600 frame with a filled 200 px white square."""
    img = np.zeros((600, 800, 3), dtype=np.uint8)
    cv2.rectangle(img, (300, 200), (500, 400), (255, 255, 255), -1)
    return img


@pytest.fixture
def space():
    return CoordinateSpace.for_image(800, 600, 900, 700, 640)


@pytest.fixture
def half_space():
    """1800x1400 image drawn at half size."""
    return CoordinateSpace.for_image(1800, 1400, 900, 700, 640)
