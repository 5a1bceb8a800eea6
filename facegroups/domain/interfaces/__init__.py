"""Service interfaces package."""
from .detection import FaceDetector
from .metadata import MetadataWriter
from .registry import KnownPeopleRegistry
from .storage import FaceDataStore

__all__ = ["FaceDetector", "FaceDataStore", "KnownPeopleRegistry", "MetadataWriter"]
