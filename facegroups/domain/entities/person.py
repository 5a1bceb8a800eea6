"""Known person registry entities."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
from uuid import UUID, uuid4

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from facegroups.domain.entities.face import coerce_embedding
from facegroups.domain.value_objects.recognition import RecognitionMode


class PersonEmbedding(BaseModel):
    """A single face-only reference embedding of a known person."""
    id: UUID = Field(default_factory=uuid4)
    embedding: np.ndarray
    source_description: Optional[str] = Field(None, description="Where the embedding came from")
    recognition_mode: RecognitionMode = RecognitionMode.VISION
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("embedding", mode="before")
    @classmethod
    def validate_embedding(cls, v):
        return coerce_embedding(v)


class KnownPerson(BaseModel):
    """A named person shared across folders."""
    id: UUID = Field(default_factory=uuid4)
    name: str
    role: Optional[str] = None
    notes: Optional[str] = None
    embeddings: List[PersonEmbedding] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def embedding_count(self) -> int:
        return len(self.embeddings)


class DuplicateKind(str, Enum):
    NONE = "none"
    NAME = "name"
    FACE = "face"
    BOTH = "both"


class DuplicateCheck(BaseModel):
    """Result of checking a new person against the registry before adding it."""
    kind: DuplicateKind = DuplicateKind.NONE
    person: Optional[KnownPerson] = None
    confidence: Optional[float] = None

    @property
    def is_duplicate(self) -> bool:
        return self.kind is not DuplicateKind.NONE
