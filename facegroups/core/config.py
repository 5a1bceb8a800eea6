"""Configuration settings for the face grouping engine."""
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict

from facegroups.domain.value_objects.recognition import (
    FaceCleanupPolicy,
    KnownPeopleMode,
    RecognitionConfig,
    RecognitionMode,
)


class Settings(BaseSettings):
    """Application settings.

    These settings are loaded from environment variables with the following precedence:
    1. Environment variables
    2. .env file
    3. Default values

    Attributes:
        RECOGNITION_MODE: Embedding strategy used for similarity ("vision" or "faceClothing")
        PRIMARY_CLUSTERING_THRESHOLD: Cosine similarity an edge must exceed in vision mode
        FUSED_CLUSTERING_THRESHOLD: Fused similarity an edge must exceed in face+clothing mode
        KNOWN_PEOPLE_DATABASE_URL: SQLAlchemy URL of the known people registry
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",  # No prefix for environment variables
        env_nested_delimiter="__"  # Use double underscore for nested settings
    )

    # Core Settings
    PROJECT_NAME: str = "Face Groups"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Recognition Settings
    RECOGNITION_MODE: RecognitionMode = RecognitionMode.FACE_AND_CLOTHING
    PRIMARY_CLUSTERING_THRESHOLD: float = 0.50
    FUSED_CLUSTERING_THRESHOLD: float = 0.55
    PRIMARY_WEIGHT: float = 0.7  # Clothing weight is 1 - PRIMARY_WEIGHT
    USE_QUALITY_WEIGHTED_EDGES: bool = True
    USE_QUALITY_GATE: bool = False
    QUALITY_GATE_THRESHOLD: float = 0.6
    SECOND_PASS_ATTACH_TO_EXISTING: bool = True
    CLUSTERING_MAX_ITERATIONS: int = 20
    MERGE_SUGGESTION_THRESHOLD: float = 0.40

    # Detection Settings
    MIN_FACE_CONFIDENCE: float = 0.7
    MIN_FACE_SIZE: int = 50
    MODEL_NAME: str = "buffalo_l"
    MODEL_CACHE_DIR: str = ".model_cache"
    DETECTION_SIZE: int = 640
    MAX_IMAGE_PIXELS: int = 1920 * 1080  # ~2MP (Full HD)
    THUMBNAIL_SIZE: int = 120

    # Storage Settings
    FACE_DATA_DIRNAME: str = ".face_data"
    FACE_CLEANUP_POLICY: FaceCleanupPolicy = FaceCleanupPolicy.NEVER

    # Known People Settings
    KNOWN_PEOPLE_MODE: KnownPeopleMode = KnownPeopleMode.ON_DEMAND
    KNOWN_PEOPLE_MIN_CONFIDENCE: float = 0.55
    KNOWN_PEOPLE_DATABASE_URL: str = "sqlite+aiosqlite:///known_people.sqlite"

    # Metadata Settings
    EXIFTOOL_PATH: str = "exiftool"
    PERSON_SHOWN_TAG: str = "XMP-iptcExt:PersonInImage"

    # Optional settings with defaults
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    def recognition_config(self, **overrides: Any) -> RecognitionConfig:
        """Build the recognition config for one scan or operation.

        Args:
            **overrides: Field values that replace the configured ones

        Returns:
            RecognitionConfig: Immutable config to pass through the engine
        """
        values = {
            "mode": self.RECOGNITION_MODE,
            "primary_threshold": self.PRIMARY_CLUSTERING_THRESHOLD,
            "fused_threshold": self.FUSED_CLUSTERING_THRESHOLD,
            "primary_weight": self.PRIMARY_WEIGHT,
            "quality_weighted_edges": self.USE_QUALITY_WEIGHTED_EDGES,
            "use_quality_gate": self.USE_QUALITY_GATE,
            "quality_gate_threshold": self.QUALITY_GATE_THRESHOLD,
            "second_pass_attach_to_existing": self.SECOND_PASS_ATTACH_TO_EXISTING,
            "max_iterations": self.CLUSTERING_MAX_ITERATIONS,
            "min_confidence": self.MIN_FACE_CONFIDENCE,
            "min_face_size": self.MIN_FACE_SIZE,
            "merge_suggestion_threshold": self.MERGE_SUGGESTION_THRESHOLD,
            "known_people_mode": self.KNOWN_PEOPLE_MODE,
            "known_people_min_confidence": self.KNOWN_PEOPLE_MIN_CONFIDENCE,
        }
        values.update(overrides)
        return RecognitionConfig(**values)


settings = Settings()
