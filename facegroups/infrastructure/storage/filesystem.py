"""File system storage for folder face data and thumbnails.

Layout inside each photo folder::

    <folder>/.face_data/face_data.json
    <folder>/.face_data/thumbnails/<face-id>.jpg
"""
import asyncio
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional
from uuid import UUID

from pydantic import ValidationError

from facegroups.core.config import settings
from facegroups.core.exceptions import PersistenceError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.folder import FolderFaceData
from facegroups.domain.interfaces.storage.face_data_store import FaceDataStore

logger = get_logger(__name__)

DATA_FILENAME = "face_data.json"
THUMBNAILS_DIRNAME = "thumbnails"


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class FileSystemFaceDataStore(FaceDataStore):
    """Stores each folder's face data next to its photos.

    Writes go to a temporary file that replaces the target, so readers never
    see a partially written aggregate. Blocking file IO runs in a thread.
    """

    def __init__(self, dirname: str = settings.FACE_DATA_DIRNAME) -> None:
        self.dirname = dirname

    def data_dir(self, folder_path: str) -> Path:
        return Path(folder_path) / self.dirname

    def data_file(self, folder_path: str) -> Path:
        return self.data_dir(folder_path) / DATA_FILENAME

    def thumbnail_file(self, face_id: UUID, folder_path: str) -> Path:
        return self.data_dir(folder_path) / THUMBNAILS_DIRNAME / f"{face_id}.jpg"

    def _load(self, folder_path: str) -> Optional[FolderFaceData]:
        path = self.data_file(folder_path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read face data", path=str(path), error=str(e))
            return None
        try:
            return FolderFaceData.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Stored face data is invalid, ignoring", path=str(path), errors=e.error_count())
            return None

    async def load_aggregate(self, folder_path: str) -> Optional[FolderFaceData]:
        data = await asyncio.to_thread(self._load, folder_path)
        if data is not None:
            logger.debug("Loaded face data", folder=folder_path, faces=len(data.faces), groups=len(data.groups))
        return data

    async def save_aggregate(self, data: FolderFaceData) -> None:
        path = self.data_file(data.folder_path)
        try:
            await asyncio.to_thread(_atomic_write, path, data.model_dump_json().encode("utf-8"))
        except OSError as e:
            raise PersistenceError(f"Failed to save face data: {e}", details={"path": str(path)}) from e
        logger.debug("Saved face data", folder=data.folder_path, faces=len(data.faces), groups=len(data.groups))

    async def delete_aggregate(self, folder_path: str) -> None:
        path = self.data_dir(folder_path)
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"Failed to delete face data: {e}", details={"path": str(path)}) from e
        logger.info("Deleted face data", folder=folder_path)

    async def load_thumbnail(self, face_id: UUID, folder_path: str) -> Optional[bytes]:
        try:
            return await asyncio.to_thread(self.thumbnail_file(face_id, folder_path).read_bytes)
        except OSError:
            return None

    async def save_thumbnail(self, data: bytes, face_id: UUID, folder_path: str) -> None:
        path = self.thumbnail_file(face_id, folder_path)
        try:
            await asyncio.to_thread(_atomic_write, path, data)
        except OSError as e:
            raise PersistenceError(f"Failed to save thumbnail: {e}", details={"path": str(path)}) from e

    async def delete_thumbnail(self, face_id: UUID, folder_path: str) -> None:
        path = self.thumbnail_file(face_id, folder_path)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"Failed to delete thumbnail: {e}", details={"path": str(path)}) from e
