"""Shared fixtures: fake detector, in-memory store and registry, embedding helpers."""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID

import numpy as np
import pytest

from facegroups.core.exceptions import PersistenceError, PersonNotFoundError
from facegroups.domain.entities.face import BoundingBox, DetectedFace, FaceGroup
from facegroups.domain.entities.folder import FolderFaceData
from facegroups.domain.entities.person import KnownPerson, PersonEmbedding
from facegroups.domain.interfaces.detection.face_detector import FaceDetector
from facegroups.domain.interfaces.metadata.metadata_writer import MetadataWriter
from facegroups.domain.interfaces.registry.known_people import KnownPeopleRegistry
from facegroups.domain.interfaces.storage.face_data_store import FaceDataStore
from facegroups.domain.value_objects.recognition import (
    FaceDetection,
    KnownPersonMatch,
    RecognitionConfig,
    RecognitionMode,
)
from facegroups.services.similarity import cosine_similarity

DIM = 32


def unit(index: int, dim: int = DIM) -> np.ndarray:
    """Basis vector, handy as a person's 'true' embedding."""
    vector = np.zeros(dim, dtype=np.float32)
    vector[index] = 1.0
    return vector


def near(base: np.ndarray, similarity: float, seed: int = 0) -> np.ndarray:
    """Unit vector with an exact cosine similarity to ``base``."""
    rng = np.random.default_rng(seed)
    base = base / np.linalg.norm(base)
    noise = rng.normal(size=base.shape).astype(np.float32)
    noise -= noise.dot(base) * base
    noise /= np.linalg.norm(noise)
    return (similarity * base + np.sqrt(1.0 - similarity ** 2) * noise).astype(np.float32)


def make_face(
    embedding: np.ndarray,
    image_path: str = "/photos/a.jpg",
    group_id: Optional[UUID] = None,
    quality: Optional[float] = None,
    context: Optional[np.ndarray] = None,
) -> DetectedFace:
    return DetectedFace(
        image_path=image_path,
        bounding_box=BoundingBox(left=0.1, top=0.1, width=0.2, height=0.2),
        embedding=embedding,
        context_embedding=context,
        group_id=group_id,
        quality_score=quality,
    )


def make_detection(embedding: np.ndarray, context: Optional[np.ndarray] = None, quality: float = 0.9) -> FaceDetection:
    return FaceDetection(
        bounding_box=BoundingBox(left=0.1, top=0.1, width=0.2, height=0.2),
        embedding=embedding,
        context_embedding=context,
        quality_score=quality,
        confidence=0.95,
        face_size=120,
        blur_score=0.8,
        thumbnail=b"\xff\xd8thumbnail",
    )


def build_aggregate(
    sizes: Sequence[int],
    names: Optional[Sequence[Optional[str]]] = None,
    folder: str = "/photos",
    seed: int = 0,
) -> FolderFaceData:
    """Aggregate with one group per entry of ``sizes``, each member in its own image."""
    rng = np.random.default_rng(seed)
    names = list(names or [None] * len(sizes))
    faces: List[DetectedFace] = []
    groups: List[FaceGroup] = []
    for index, size in enumerate(sizes):
        members = [
            make_face(rng.normal(size=DIM).astype(np.float32), image_path=f"{folder}/g{index}_{n}.jpg")
            for n in range(size)
        ]
        group = FaceGroup(
            name=names[index],
            representative_face_id=members[0].id,
            face_ids=[face.id for face in members],
        )
        for face in members:
            face.group_id = group.id
        faces.extend(members)
        groups.append(group)
    return FolderFaceData(folder_path=folder, faces=faces, groups=groups)


class FakeDetector(FaceDetector):
    """Returns scripted detections per image path and records concurrency."""

    def __init__(
        self,
        results: Optional[Dict[str, Union[List[FaceDetection], Exception]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.results = results or {}
        self.delay = delay
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def detect(self, image_path: str, config: RecognitionConfig) -> List[FaceDetection]:
        self.calls.append(image_path)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            result = self.results.get(image_path, [])
            if isinstance(result, Exception):
                raise result
            return list(result)
        finally:
            self.in_flight -= 1


class InMemoryFaceDataStore(FaceDataStore):
    """Face data store keeping deep copies in dictionaries."""

    def __init__(self) -> None:
        self.aggregates: Dict[str, FolderFaceData] = {}
        self.thumbnails: Dict[tuple, bytes] = {}
        self.saves: List[FolderFaceData] = []
        self.fail_saves = False

    async def load_aggregate(self, folder_path: str) -> Optional[FolderFaceData]:
        data = self.aggregates.get(folder_path)
        return data.model_copy(deep=True) if data is not None else None

    async def save_aggregate(self, data: FolderFaceData) -> None:
        if self.fail_saves:
            raise PersistenceError("disk full")
        snapshot = data.model_copy(deep=True)
        self.aggregates[data.folder_path] = snapshot
        self.saves.append(snapshot)

    async def delete_aggregate(self, folder_path: str) -> None:
        self.aggregates.pop(folder_path, None)
        for key in [key for key in self.thumbnails if key[1] == folder_path]:
            del self.thumbnails[key]

    async def load_thumbnail(self, face_id: UUID, folder_path: str) -> Optional[bytes]:
        return self.thumbnails.get((face_id, folder_path))

    async def save_thumbnail(self, data: bytes, face_id: UUID, folder_path: str) -> None:
        self.thumbnails[(face_id, folder_path)] = data

    async def delete_thumbnail(self, face_id: UUID, folder_path: str) -> None:
        self.thumbnails.pop((face_id, folder_path), None)


class InMemoryRegistry(KnownPeopleRegistry):
    """Registry matching by cosine similarity over in-memory people."""

    def __init__(self) -> None:
        self.people: Dict[UUID, KnownPerson] = {}
        self.queries = 0

    def add(self, name: str, *embeddings: np.ndarray) -> KnownPerson:
        person = KnownPerson(name=name, embeddings=[PersonEmbedding(embedding=e) for e in embeddings])
        self.people[person.id] = person
        return person

    async def match_face(self, embedding: np.ndarray, threshold: float, max_results: int = 1) -> List[KnownPersonMatch]:
        self.queries += 1
        matches = []
        for person in self.people.values():
            scored = [(cosine_similarity(embedding, e.embedding), e.id) for e in person.embeddings]
            if not scored:
                continue
            confidence, embedding_id = max(scored, key=lambda item: item[0])
            if confidence >= threshold:
                matches.append(KnownPersonMatch(
                    person_id=person.id,
                    person_name=person.name,
                    confidence=confidence,
                    matched_embedding_id=embedding_id,
                ))
        matches.sort(key=lambda match: -match.confidence)
        return matches[:max_results]

    async def lookup_person(self, person_id: UUID) -> Optional[KnownPerson]:
        return self.people.get(person_id)

    async def find_by_name(self, name: str) -> Optional[KnownPerson]:
        return next(
            (p for p in self.people.values() if p.name.strip().lower() == name.strip().lower()),
            None,
        )

    async def add_person(self, name, embeddings, role=None, notes=None) -> KnownPerson:
        person = KnownPerson(name=name, role=role, notes=notes, embeddings=list(embeddings))
        self.people[person.id] = person
        return person

    async def add_embeddings(self, person_id: UUID, embeddings: List[PersonEmbedding]) -> int:
        person = self.people.get(person_id)
        if person is None:
            raise PersonNotFoundError(f"Person not found: {person_id}")
        existing = {e.embedding.tobytes() for e in person.embeddings}
        new = [e for e in embeddings if e.embedding.tobytes() not in existing]
        person.embeddings.extend(new)
        return len(new)


class FakeMetadataWriter(MetadataWriter):
    """Keeps written tag values per path."""

    def __init__(self, existing: Optional[Dict[str, List[str]]] = None, failing: Sequence[str] = ()) -> None:
        self.values: Dict[str, List[str]] = dict(existing or {})
        self.failing = set(failing)
        self.writes: Dict[str, str] = {}

    async def write_field(self, key: str, value: str, paths: Sequence[str]) -> List[str]:
        written = []
        for path in paths:
            if path in self.failing:
                continue
            self.writes[path] = value
            self.values[path] = [part.strip() for part in value.split(",")]
            written.append(path)
        return written

    async def read_list_field(self, key: str, path: str) -> List[str]:
        return list(self.values.get(path, []))


@pytest.fixture
def config() -> RecognitionConfig:
    """Vision-mode config with the default thresholds."""
    return RecognitionConfig(mode=RecognitionMode.VISION)


@pytest.fixture
def fused_config() -> RecognitionConfig:
    return RecognitionConfig(mode=RecognitionMode.FACE_AND_CLOTHING)


@pytest.fixture
def store() -> InMemoryFaceDataStore:
    return InMemoryFaceDataStore()


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry()


@pytest.fixture
def photo_folder(tmp_path: Path):
    """Factory writing placeholder image files into a temporary folder."""
    def create(*names: str) -> List[str]:
        paths = []
        for name in names:
            path = tmp_path / name
            path.write_bytes(b"image:" + name.encode())
            paths.append(str(path))
        return paths
    return create
