"""Custom exceptions for the face grouping engine."""
from typing import Optional


class FaceGroupsError(Exception):
    """Base exception for face grouping operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize face grouping error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class DetectionError(FaceGroupsError):
    """Raised when face detection fails for an image."""
    pass


class InvalidImageError(DetectionError):
    """Raised when the provided image is invalid or cannot be decoded."""
    pass


class ModelLoadError(DetectionError):
    """Raised when the face recognition model fails to load."""
    pass


class PersistenceError(FaceGroupsError):
    """Raised when face data or thumbnails cannot be written or deleted."""
    pass


class RegistryError(FaceGroupsError):
    """Base exception for known people registry operations."""
    pass


class PersonNotFoundError(RegistryError):
    """Raised when a known person does not exist in the registry."""
    pass


class InvalidMutationError(FaceGroupsError):
    """Raised when a group mutation would break the aggregate's invariants.

    Callers treat this as a rejected no-op rather than a user-facing failure.
    """
    pass


class MetadataWriteError(FaceGroupsError):
    """Raised when image metadata cannot be read or written."""
    pass
