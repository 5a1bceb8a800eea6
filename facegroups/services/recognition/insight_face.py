"""
InsightFace-based implementation of the face detector.

This module provides a concrete implementation of the face detector using the
InsightFace library. For every image it returns the detected faces with their
face embeddings, quality figures and thumbnails, and in face+clothing mode a
colour histogram of the torso below each face.

Key Features:
    - Face detection with confidence and size filtering
    - Face embedding extraction (L2-normalized)
    - Laplacian sharpness and composite quality score
    - Torso colour descriptor for face+clothing mode
    - JPEG thumbnails of the expanded face region

Example:
    ```python
    detector = InsightFaceDetector()
    faces = await detector.detect("/photos/trip/IMG_0001.jpg", settings.recognition_config())
    ```

Note:
    This implementation uses CPU inference by default. For GPU support,
    pass 'CUDAExecutionProvider' in ``providers``.
"""
import asyncio
import math
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, TypeVar

import cv2
import numpy as np
from insightface.app import FaceAnalysis
from insightface.app.common import Face as InsightFace

from facegroups.core.config import settings
from facegroups.core.exceptions import DetectionError, InvalidImageError, ModelLoadError
from facegroups.core.logging import get_logger
from facegroups.core.utils.images import bytes_to_numpy_array
from facegroups.domain.entities.face import BoundingBox
from facegroups.domain.interfaces.detection.face_detector import FaceDetector
from facegroups.domain.value_objects.recognition import FaceDetection, RecognitionConfig
from facegroups.services.recognition import quality

logger = get_logger(__name__)

# Type variable for context manager
T = TypeVar('T', bound='InsightFaceDetector')


class InsightFaceDetector(FaceDetector):
    """
    InsightFace-based implementation of the face detector.

    Model inference and image decoding are blocking, so they run in a worker
    thread. A lock serializes calls into the model, which is not safe to use
    from several threads at once.

    Attributes:
        model: InsightFace model instance for face analysis
    """

    def __init__(
        self,
        model_name: str = settings.MODEL_NAME,
        cache_dir: str = settings.MODEL_CACHE_DIR,
        det_size: int = settings.DETECTION_SIZE,
        thumbnail_size: int = settings.THUMBNAIL_SIZE,
        providers: Sequence[str] = ("CPUExecutionProvider",),
    ) -> None:
        """Initialize InsightFace model with optimal settings."""
        try:
            self.model = FaceAnalysis(name=model_name, root=cache_dir, providers=list(providers))
            # Detection size affects accuracy significantly
            self.model.prepare(ctx_id=0, det_size=(det_size, det_size))
        except Exception as e:
            logger.error("Failed to load face model", model=model_name, error=str(e), exc_info=True)
            raise ModelLoadError(f"Failed to load model {model_name}: {e}") from e
        self.thumbnail_size = thumbnail_size
        self._model_lock = asyncio.Lock()

    async def __aenter__(self) -> T:
        """Enter async context, ensuring resources are ready."""
        logger.debug("Entering InsightFace detector context")
        return self

    async def __aexit__(self, exc_type: Optional[type], exc_val: Optional[Exception],
                        exc_tb: Optional[Any]) -> None:
        """Exit async context, releasing the model."""
        logger.debug("Cleaning up InsightFace detector resources")
        if exc_type:
            logger.error(
                "Error occurred during context exit",
                error=str(exc_val),
                exc_info=True
            )
        self.model = None

    def _load_and_validate_image(self, image_path: str) -> np.ndarray:
        """Load and downscale an image for face detection."""
        try:
            image_bytes = Path(image_path).read_bytes()
        except OSError as e:
            raise InvalidImageError(f"Cannot read image: {e}", details={"path": image_path}) from e

        img = bytes_to_numpy_array(image_bytes)
        height, width = img.shape[:2]
        pixels = width * height

        # Only resize if image is too large
        if pixels > settings.MAX_IMAGE_PIXELS:
            scale = math.sqrt(settings.MAX_IMAGE_PIXELS / pixels)
            new_width = int(width * scale)
            new_height = int(height * scale)

            logger.debug(
                "Resizing large image",
                original_size=(width, height),
                new_size=(new_width, new_height)
            )

            img = cv2.resize(
                img,
                (new_width, new_height),
                interpolation=cv2.INTER_AREA
            )

        return img

    def _convert_to_detection(
        self,
        face_data: InsightFace,
        image: np.ndarray,
        config: RecognitionConfig,
    ) -> Optional[FaceDetection]:
        """
        Convert an InsightFace result into a detection, or None if it is filtered out.

        Coordinates are normalized to 0-1; the confidence stays on InsightFace's
        0-1 scale.
        """
        height, width = image.shape[:2]
        box: Tuple[int, int, int, int] = quality.clip_box(tuple(face_data.bbox.astype(int)), width, height)
        face_size = box[2] - box[0]
        confidence = float(face_data.det_score)

        if confidence < config.min_confidence or face_size < config.min_face_size:
            return None
        if face_data.embedding is None:
            return None

        embedding = getattr(face_data, "normed_embedding", None)
        if embedding is None:
            embedding = face_data.embedding / np.linalg.norm(face_data.embedding)

        blur = quality.blur_score(quality.crop(image, box))
        context = None
        if config.uses_context:
            torso = quality.torso_box(box, width, height)
            if torso is not None:
                context = quality.clothing_embedding(image, torso)

        return FaceDetection(
            bounding_box=BoundingBox(
                left=box[0] / width,
                top=box[1] / height,
                width=(box[2] - box[0]) / width,
                height=(box[3] - box[1]) / height,
            ),
            embedding=embedding,
            context_embedding=context,
            quality_score=quality.quality_score(confidence, face_size, blur),
            confidence=min(confidence, 1.0),
            face_size=face_size,
            blur_score=blur,
            thumbnail=quality.make_thumbnail(
                image, quality.expand_box(box, width, height), self.thumbnail_size
            ),
        )

    def _process_image(self, image_path: str, config: RecognitionConfig) -> List[FaceDetection]:
        image = self._load_and_validate_image(image_path)
        try:
            faces = self.model.get(image, max_num=0)
        except Exception as e:
            logger.error(
                "Face processing failed",
                error=str(e),
                path=image_path,
                image_shape=image.shape,
                exc_info=True
            )
            raise DetectionError(f"Face detection failed: {e}", details={"path": image_path}) from e

        detections = [self._convert_to_detection(face, image, config) for face in faces or []]
        detections = [detection for detection in detections if detection is not None]
        logger.debug(
            "Face detection results",
            path=image_path,
            faces_found=len(faces) if faces else 0,
            faces_kept=len(detections),
        )
        return detections

    async def detect(self, image_path: str, config: RecognitionConfig) -> List[FaceDetection]:
        """Detect faces without blocking the event loop."""
        if self.model is None:
            raise ModelLoadError("Face model has been released")
        async with self._model_lock:
            return await asyncio.to_thread(self._process_image, image_path, config)
