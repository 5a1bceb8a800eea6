"""Face detection interface."""
from abc import ABC, abstractmethod
from typing import List

from ...value_objects.recognition import FaceDetection, RecognitionConfig


class FaceDetector(ABC):
    """Interface for per-image face detection and embedding extraction."""

    @abstractmethod
    async def detect(self, image_path: str, config: RecognitionConfig) -> List[FaceDetection]:
        """
        Detect faces in one image.

        Args:
            image_path: Path of the image on disk
            config: Recognition parameters; ``config.mode`` decides whether a
                context (clothing) embedding is produced

        Returns:
            Detected faces passing the configured confidence and size filters,
            each with its embedding(s), quality figures and JPEG thumbnail

        Raises:
            InvalidImageError: If the image cannot be read or decoded
            DetectionError: If the model fails on the image
        """
        pass
