"""
Image file utility functions.
"""
import os
from typing import List

import cv2
import numpy as np

from facegroups.core.exceptions import InvalidImageError

SUPPORTED_IMAGE_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".heic", ".heif", ".tif", ".tiff", ".bmp", ".webp",
})


def bytes_to_numpy_array(image_bytes: bytes, flags: int = cv2.IMREAD_COLOR) -> np.ndarray:
    """Convert image bytes to a numpy array.

    Args:
        image_bytes: Raw image bytes
        flags: OpenCV imread flags (default: COLOR)

    Returns:
        numpy.ndarray: Image as a numpy array

    Raises:
        InvalidImageError: If the image cannot be decoded
    """
    np_array = np.frombuffer(image_bytes, np.uint8)
    img = cv2.imdecode(np_array, flags)

    if img is None:
        raise InvalidImageError("Failed to decode image bytes")

    return img


def is_image_file(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in SUPPORTED_IMAGE_EXTENSIONS


def list_image_files(folder_path: str) -> List[str]:
    """List the images directly inside a folder, sorted, skipping hidden files."""
    with os.scandir(folder_path) as entries:
        return sorted(
            entry.path
            for entry in entries
            if entry.is_file() and not entry.name.startswith(".") and is_image_file(entry.name)
        )
