"""Per-folder face data aggregate."""
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from facegroups.domain.entities.face import DetectedFace, FaceGroup
from facegroups.domain.value_objects.recognition import KnownPersonMatchRecord, RecognitionMode


class FileSignature(BaseModel):
    """Cheap fingerprint used to decide whether an image needs reprocessing."""
    file_size: int
    modified_at: float = Field(..., description="POSIX modification time")


class FolderFaceData(BaseModel):
    """Faces, groups and scan bookkeeping for one photo folder.

    Faces and groups are stored as flat lists indexed by id. Group membership
    lives in ``FaceGroup.face_ids``; ``DetectedFace.group_id`` mirrors it.
    """
    folder_path: str
    faces: List[DetectedFace] = Field(default_factory=list)
    groups: List[FaceGroup] = Field(default_factory=list)
    scanned_files: Dict[str, FileSignature] = Field(default_factory=dict)
    scan_complete: bool = False
    recognition_mode: Optional[RecognitionMode] = Field(
        None, description="Mode used for the last completed scan, None for legacy data"
    )
    last_scan_date: Optional[datetime] = None
    known_person_matches: Dict[str, KnownPersonMatchRecord] = Field(
        default_factory=dict, description="Known person match per group id"
    )

    def face_index(self) -> Dict[UUID, DetectedFace]:
        return {face.id: face for face in self.faces}

    def group_index(self) -> Dict[UUID, FaceGroup]:
        return {group.id: group for group in self.groups}

    def get_face(self, face_id: UUID) -> Optional[DetectedFace]:
        return next((face for face in self.faces if face.id == face_id), None)

    def get_group(self, group_id: UUID) -> Optional[FaceGroup]:
        return next((group for group in self.groups if group.id == group_id), None)

    def faces_in_group(self, group_id: UUID) -> List[DetectedFace]:
        """Member faces of a group in membership order."""
        group = self.get_group(group_id)
        if group is None:
            return []
        index = self.face_index()
        return [index[face_id] for face_id in group.face_ids if face_id in index]
