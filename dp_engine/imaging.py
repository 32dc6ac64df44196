"""
Image loading and resizing helpers.

Phone photos usually carry their rotation in EXIF; it is applied on load so
that the pixel grid matches what the user sees.
"""

import base64
import binascii
import io
from pathlib import Path
from typing import Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError


def _pil_to_bgr(img: Image.Image) -> np.ndarray:
    img = ImageOps.exif_transpose(img)
    rgb = np.array(img.convert("RGB"))
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def load_image_bytes(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG, PNG, ...) to a BGR array.

    Raises:
        ValueError: if the bytes are not a decodable image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _pil_to_bgr(img)
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Failed to decode image: {e}") from e


def load_image_file(path: Union[str, Path]) -> np.ndarray:
    """Load an image file as BGR, honoring EXIF orientation."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    return load_image_bytes(path.read_bytes())


def decode_base64_image(base64_str: str) -> np.ndarray:
    """Decode a base64 image string (data URLs accepted) to a BGR array."""
    if ',' in base64_str:
        base64_str = base64_str.split(',', 1)[1]

    try:
        img_bytes = base64.b64decode(base64_str, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 image: {e}") from e

    return load_image_bytes(img_bytes)


def resize_to(image: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """
    Resize to (width, height); returns a copy even when the size is unchanged.
    """
    w, h = size
    if image.shape[1] == w and image.shape[0] == h:
        return image.copy()
    return cv2.resize(image, (w, h), interpolation=cv2.INTER_AREA)
