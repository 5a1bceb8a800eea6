"""Service container for dependency injection."""
from typing import Optional

from facegroups.core.config import settings
from facegroups.domain.interfaces.detection.face_detector import FaceDetector
from facegroups.domain.interfaces.metadata.metadata_writer import MetadataWriter
from facegroups.domain.interfaces.storage.face_data_store import FaceDataStore
from facegroups.domain.value_objects.recognition import RecognitionConfig
from facegroups.infrastructure.database.session import build_engine
from facegroups.infrastructure.metadata.exiftool import ExifToolMetadataWriter
from facegroups.infrastructure.registry.sql_registry import SqlKnownPeopleRegistry
from facegroups.infrastructure.storage.filesystem import FileSystemFaceDataStore
from facegroups.services.face_library import FaceLibrary
from facegroups.services.known_people import KnownPersonMatcher
from facegroups.services.recognition.insight_face import InsightFaceDetector
from facegroups.services.scanning import ScanOrchestrator


class ServiceContainer:
    """Container for application services.

    This container manages the lifecycle and dependencies of all services in the application.
    It ensures proper initialization order and provides a single source of truth for service instances.

    Example:
        ```python
        container = ServiceContainer()
        await container.initialize()

        library = container.library("/photos/trip")
        await library.load()
        ```
    """

    def __init__(self) -> None:
        """Initialize empty container."""
        # Infrastructure - Use interface type hints
        self.store: Optional[FaceDataStore] = None
        self.registry: Optional[SqlKnownPeopleRegistry] = None
        self.metadata_writer: Optional[MetadataWriter] = None
        self.detector: Optional[FaceDetector] = None

        # Domain services (depend on interfaces)
        self.orchestrator: Optional[ScanOrchestrator] = None

    async def initialize(self, load_detector: bool = True) -> None:
        """Initialize all services in the correct order.

        Args:
            load_detector: Load the face model; only scanning needs it
        """
        self.store = FileSystemFaceDataStore()
        self.registry = SqlKnownPeopleRegistry(build_engine(settings.KNOWN_PEOPLE_DATABASE_URL))
        await self.registry.initialize()
        self.metadata_writer = ExifToolMetadataWriter()
        if load_detector:
            self.detector = InsightFaceDetector()
            self.orchestrator = ScanOrchestrator(
                detector=self.detector,
                store=self.store,
                matcher=KnownPersonMatcher(self.registry),
            )

    def library(self, folder_path: str, config: Optional[RecognitionConfig] = None) -> FaceLibrary:
        """Create the face library of one folder from the container's services."""
        return FaceLibrary(
            folder_path=folder_path,
            store=self.store,
            orchestrator=self.orchestrator,
            config=config or settings.recognition_config(),
            registry=self.registry,
            metadata_writer=self.metadata_writer,
            cleanup_policy=settings.FACE_CLEANUP_POLICY,
            person_tag=settings.PERSON_SHOWN_TAG,
        )

    async def cleanup(self) -> None:
        """Cleanup all services in reverse order of initialization."""
        self.orchestrator = None
        self.detector = None
        self.metadata_writer = None

        if self.registry:
            await self.registry.close()
            self.registry = None

        self.store = None


# Global container instance
container = ServiceContainer()
