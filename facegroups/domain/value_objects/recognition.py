"""Face recognition value objects."""
from enum import Enum
from typing import FrozenSet, List, Optional
from uuid import UUID

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from facegroups.domain.entities.face import BoundingBox, coerce_embedding


class RecognitionMode(str, Enum):
    """Embedding strategy used for face similarity."""
    VISION = "vision"  # Primary face embedding only
    FACE_AND_CLOTHING = "faceClothing"  # Primary fused with a torso/clothing embedding


class KnownPeopleMode(str, Enum):
    """When groups are matched against the known people registry."""
    OFF = "off"
    ON_DEMAND = "onDemand"
    ALWAYS_ON = "alwaysOn"


class FaceCleanupPolicy(str, Enum):
    """How long face data is kept after the last scan."""
    SEVEN_DAYS = "7days"
    THIRTY_DAYS = "30days"
    NEVER = "never"

    @property
    def max_age_seconds(self) -> Optional[float]:
        if self is FaceCleanupPolicy.SEVEN_DAYS:
            return 7 * 24 * 60 * 60
        if self is FaceCleanupPolicy.THIRTY_DAYS:
            return 30 * 24 * 60 * 60
        return None


class RecognitionConfig(BaseModel):
    """Recognition parameters for one scan or operation.

    Built once from settings (see ``Settings.recognition_config``) and passed
    explicitly to every component that needs it.
    """
    mode: RecognitionMode = RecognitionMode.VISION
    primary_threshold: float = Field(0.50, description="Edge threshold in vision mode")
    fused_threshold: float = Field(0.55, description="Edge threshold in face+clothing mode")
    primary_weight: float = Field(0.7, ge=0.0, le=1.0, description="Weight of the face similarity when fused")
    quality_weighted_edges: bool = True
    use_quality_gate: bool = False
    quality_gate_threshold: float = Field(0.6, ge=0.0, le=1.0)
    second_pass_attach_to_existing: bool = True
    max_iterations: int = Field(20, ge=1)
    min_confidence: float = Field(0.7, ge=0.0, le=1.0)
    min_face_size: int = Field(50, ge=0)
    merge_suggestion_threshold: float = 0.40
    known_people_mode: KnownPeopleMode = KnownPeopleMode.ON_DEMAND
    known_people_min_confidence: float = Field(0.55, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True)

    @property
    def clustering_threshold(self) -> float:
        """Threshold for the active recognition mode."""
        if self.mode is RecognitionMode.FACE_AND_CLOTHING:
            return self.fused_threshold
        return self.primary_threshold

    @property
    def uses_context(self) -> bool:
        return self.mode is RecognitionMode.FACE_AND_CLOTHING


class FaceDetection(BaseModel):
    """A single face returned by a detector, before it joins an aggregate."""
    bounding_box: BoundingBox
    embedding: np.ndarray
    context_embedding: Optional[np.ndarray] = None
    quality_score: Optional[float] = None
    confidence: Optional[float] = None
    face_size: Optional[int] = None
    blur_score: Optional[float] = None
    thumbnail: bytes = Field(..., description="JPEG thumbnail of the face crop")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("embedding", "context_embedding", mode="before")
    @classmethod
    def validate_embedding(cls, v):
        return coerce_embedding(v)


class MergeSuggestion(BaseModel):
    """A candidate merge of two groups for a human to confirm. Never persisted."""
    group1_id: UUID
    group2_id: UUID
    similarity: float = Field(..., description="Similarity of the representatives, higher is closer")

    model_config = ConfigDict(frozen=True)

    @property
    def pair(self) -> FrozenSet[UUID]:
        """Unordered group pair used for deduplication and dismissal."""
        return frozenset((self.group1_id, self.group2_id))


class KnownPersonMatch(BaseModel):
    """Registry match for a query embedding."""
    person_id: UUID
    person_name: str
    confidence: float = Field(..., description="Match confidence (0-1)")
    matched_embedding_id: Optional[UUID] = None


class KnownPersonMatchRecord(BaseModel):
    """Match kept for a group, separate from the group's name."""
    person_id: UUID
    person_name: str
    confidence: float


class FileDiff(BaseModel):
    """Partition of a folder's images for an incremental scan."""
    to_scan: List[str] = Field(default_factory=list)
    to_remove: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)


class ScanPhase(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    CHECKPOINT = "checkpoint"
    COMPLETED = "completed"


class ScanProgress(BaseModel):
    """Progress signal published by the scan orchestrator."""
    phase: ScanPhase
    completed: int = 0
    total: int = 0

    @property
    def label(self) -> str:
        return f"{self.completed}/{self.total}"

