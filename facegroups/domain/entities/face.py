"""Core face domain entities."""
import base64
from datetime import datetime, timezone
from typing import List, Optional, Union
from uuid import UUID, uuid4

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def coerce_embedding(value: Optional[Union[np.ndarray, list, str, bytes]]) -> Optional[np.ndarray]:
    """Convert a stored or raw embedding into a float32 numpy vector.

    Accepts numpy arrays, plain lists, raw float32 bytes and the base64 text
    produced by :func:`encode_embedding`.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = base64.b64decode(value)
    if isinstance(value, (bytes, bytearray)):
        return np.frombuffer(value, dtype=np.float32).copy()
    return np.asarray(value, dtype=np.float32).reshape(-1)


def encode_embedding(value: Optional[np.ndarray]) -> Optional[str]:
    """Encode an embedding as base64 float32 bytes for JSON storage."""
    if value is None:
        return None
    return base64.b64encode(np.asarray(value, dtype=np.float32).tobytes()).decode("ascii")


class BoundingBox(BaseModel):
    """Face bounding box in normalized (0-1) image coordinates."""
    left: float = Field(..., description="Left coordinate of the bounding box")
    top: float = Field(..., description="Top coordinate of the bounding box")
    width: float = Field(..., description="Width of the bounding box")
    height: float = Field(..., description="Height of the bounding box")


class DetectedFace(BaseModel):
    """One face found in one image.

    The only field that changes after detection is ``group_id``; it is kept in
    sync with :attr:`FaceGroup.face_ids` by the mutation layer.
    """
    id: UUID = Field(default_factory=uuid4, description="Unique face identifier")
    image_path: str = Field(..., description="Path of the image containing the face")
    bounding_box: BoundingBox = Field(..., description="Face location in the image")
    embedding: np.ndarray = Field(..., description="Primary face embedding")
    context_embedding: Optional[np.ndarray] = Field(
        None, description="Secondary context (clothing/torso) embedding used in fused mode"
    )
    group_id: Optional[UUID] = Field(None, description="Group the face belongs to")
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    quality_score: Optional[float] = Field(None, ge=0.0, le=1.0, description="Composite quality score")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0, description="Detection confidence")
    face_size: Optional[int] = Field(None, description="Face width in pixels")
    blur_score: Optional[float] = Field(None, description="Normalized sharpness (higher is sharper)")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("embedding", "context_embedding", mode="before")
    @classmethod
    def validate_embedding(cls, v: Optional[Union[np.ndarray, list, str, bytes]]) -> Optional[np.ndarray]:
        """Validate and convert embeddings to numpy arrays."""
        return coerce_embedding(v)

    @field_serializer("embedding", "context_embedding", when_used="json")
    def serialize_embedding(self, v: Optional[np.ndarray]) -> Optional[str]:
        return encode_embedding(v)


class FaceGroup(BaseModel):
    """A putative identity: a non-empty set of faces believed to be one person."""
    id: UUID = Field(default_factory=uuid4, description="Unique group identifier")
    name: Optional[str] = Field(None, description="Human assigned name")
    representative_face_id: UUID = Field(..., description="Face shown as the group thumbnail")
    face_ids: List[UUID] = Field(..., description="Member face identifiers")

    @classmethod
    def solo(cls, face_id: UUID) -> "FaceGroup":
        """Create an unnamed single-member group."""
        return cls(representative_face_id=face_id, face_ids=[face_id])

    @property
    def is_named(self) -> bool:
        return bool(self.name)
