"""Image-level helpers for face quality, crops and clothing descriptors."""
from typing import Optional, Tuple

import cv2
import numpy as np

from facegroups.core.exceptions import DetectionError

PixelBox = Tuple[int, int, int, int]  # x1, y1, x2, y2

BLUR_VARIANCE_SCALE = 500.0
MIN_SCORED_FACE_SIZE = 50
FACE_SIZE_RANGE = 150
THUMBNAIL_EXPANSION = 0.15
THUMBNAIL_JPEG_QUALITY = 80

# Torso region relative to the face box
TORSO_GAP = 0.2
TORSO_HEIGHT = 1.5
TORSO_WIDTH = 1.8
TORSO_MIN_VISIBLE = 0.3

HSV_BINS = (8, 8, 4)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def blur_score(crop: np.ndarray) -> float:
    """Sharpness in [0, 1] from the variance of the Laplacian."""
    if crop.size == 0:
        return 0.0
    gray = cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY) if crop.ndim == 3 else crop
    variance = float(cv2.Laplacian(gray, cv2.CV_64F).var())
    return _clamp(variance / BLUR_VARIANCE_SCALE)


def size_score(face_size: int) -> float:
    return _clamp((face_size - MIN_SCORED_FACE_SIZE) / FACE_SIZE_RANGE)


def quality_score(confidence: float, face_size: int, blur: float) -> float:
    """Composite quality: 40% detector confidence, 30% size, 30% sharpness."""
    return _clamp(0.4 * confidence + 0.3 * size_score(face_size) + 0.3 * blur)


def clip_box(box: PixelBox, width: int, height: int) -> PixelBox:
    x1, y1, x2, y2 = box
    return (
        int(max(0, min(width, x1))),
        int(max(0, min(height, y1))),
        int(max(0, min(width, x2))),
        int(max(0, min(height, y2))),
    )


def expand_box(box: PixelBox, width: int, height: int, factor: float = THUMBNAIL_EXPANSION) -> PixelBox:
    """Grow a box by ``factor`` of its size on every side, clipped to the image."""
    x1, y1, x2, y2 = box
    dx = (x2 - x1) * factor
    dy = (y2 - y1) * factor
    return clip_box((x1 - dx, y1 - dy, x2 + dx, y2 + dy), width, height)


def torso_box(face: PixelBox, width: int, height: int) -> Optional[PixelBox]:
    """Estimate the torso region below a face.

    Returns None when less than 30% of the expected region is inside the image.
    """
    x1, y1, x2, y2 = face
    face_width = x2 - x1
    face_height = y2 - y1
    if face_width <= 0 or face_height <= 0:
        return None

    center_x = (x1 + x2) / 2
    top = y2 + TORSO_GAP * face_height
    torso_width = TORSO_WIDTH * face_width
    torso_height = TORSO_HEIGHT * face_height
    box = clip_box(
        (center_x - torso_width / 2, top, center_x + torso_width / 2, top + torso_height),
        width,
        height,
    )
    visible_width = box[2] - box[0]
    visible_height = box[3] - box[1]
    if visible_width <= TORSO_MIN_VISIBLE * face_width or visible_height <= TORSO_MIN_VISIBLE * face_height:
        return None
    return box


def crop(image: np.ndarray, box: PixelBox) -> np.ndarray:
    x1, y1, x2, y2 = box
    return image[y1:y2, x1:x2]


def clothing_embedding(image: np.ndarray, box: PixelBox) -> Optional[np.ndarray]:
    """L2-normalized HSV color histogram of a torso region."""
    region = crop(image, box)
    if region.size == 0:
        return None
    hsv = cv2.cvtColor(region, cv2.COLOR_BGR2HSV)
    hist = cv2.calcHist([hsv], [0, 1, 2], None, list(HSV_BINS), [0, 180, 0, 256, 0, 256])
    vector = hist.flatten().astype(np.float32)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return None
    return vector / norm


def make_thumbnail(image: np.ndarray, box: PixelBox, size: int = 120) -> bytes:
    """JPEG thumbnail of a region, scaled so its longest side is ``size`` pixels."""
    region = crop(image, box)
    if region.size == 0:
        raise DetectionError("Empty thumbnail region", details={"box": box})
    height, width = region.shape[:2]
    scale = size / max(height, width)
    resized = cv2.resize(
        region,
        (max(1, int(round(width * scale))), max(1, int(round(height * scale)))),
        interpolation=cv2.INTER_AREA if scale < 1 else cv2.INTER_LINEAR,
    )
    ok, encoded = cv2.imencode(".jpg", resized, [int(cv2.IMWRITE_JPEG_QUALITY), THUMBNAIL_JPEG_QUALITY])
    if not ok:
        raise DetectionError("Failed to encode thumbnail")
    return encoded.tobytes()
