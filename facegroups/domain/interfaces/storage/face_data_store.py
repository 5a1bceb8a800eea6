"""Face data persistence interface."""
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from ...entities.folder import FolderFaceData


class FaceDataStore(ABC):
    """Interface for storing the per-folder aggregate and face thumbnails."""

    @abstractmethod
    async def load_aggregate(self, folder_path: str) -> Optional[FolderFaceData]:
        """
        Load the stored aggregate of a folder.

        Returns:
            The aggregate, or None if nothing is stored or it cannot be read
        """
        pass

    @abstractmethod
    async def save_aggregate(self, data: FolderFaceData) -> None:
        """
        Persist an aggregate, replacing the stored one atomically.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_aggregate(self, folder_path: str) -> None:
        """Delete the stored aggregate and every thumbnail of a folder."""
        pass

    @abstractmethod
    async def load_thumbnail(self, face_id: UUID, folder_path: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def save_thumbnail(self, data: bytes, face_id: UUID, folder_path: str) -> None:
        """
        Store a face thumbnail.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_thumbnail(self, face_id: UUID, folder_path: str) -> None:
        pass
