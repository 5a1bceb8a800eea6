"""Known people registry backed by SQLAlchemy (SQLite via aiosqlite by default)."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from facegroups.core.exceptions import PersonNotFoundError, RegistryError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.person import (
    DuplicateCheck,
    DuplicateKind,
    KnownPerson,
    PersonEmbedding,
)
from facegroups.domain.interfaces.registry.known_people import KnownPeopleRegistry
from facegroups.domain.value_objects.recognition import KnownPersonMatch, RecognitionMode
from facegroups.infrastructure.database.models import KnownPersonRecord, PersonEmbeddingRecord
from facegroups.infrastructure.database.session import build_session_factory, init_models
from facegroups.infrastructure.database.unit_of_work import UnitOfWork
from facegroups.services.similarity import normalize

logger = get_logger(__name__)

DUPLICATE_FACE_THRESHOLD = 0.55


@dataclass
class _EmbeddingIndex:
    """Normalized embeddings of all people, stacked per dimension for vectorized matching."""
    matrices: Dict[int, np.ndarray]
    rows: Dict[int, List[int]]
    embedding_ids: List[UUID]
    person_ids: List[UUID]
    person_names: List[str]


def _to_embedding_record(embedding: PersonEmbedding) -> PersonEmbeddingRecord:
    vector = np.asarray(embedding.embedding, dtype=np.float32)
    return PersonEmbeddingRecord(
        id=embedding.id,
        vector=vector.tobytes(),
        dimension=int(vector.size),
        source_description=embedding.source_description,
        recognition_mode=embedding.recognition_mode.value,
        added_at=embedding.added_at,
    )


def _to_domain(record: KnownPersonRecord) -> KnownPerson:
    return KnownPerson(
        id=record.id,
        name=record.name,
        role=record.role,
        notes=record.notes,
        embeddings=[
            PersonEmbedding(
                id=embedding.id,
                embedding=embedding.vector,
                source_description=embedding.source_description,
                recognition_mode=RecognitionMode(embedding.recognition_mode),
                added_at=embedding.added_at,
            )
            for embedding in record.embeddings
        ],
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _dedupe(embeddings: Sequence[PersonEmbedding], existing: Sequence[bytes] = ()) -> List[PersonEmbedding]:
    """Drop embeddings whose vector bytes are already stored or repeated."""
    seen = set(existing)
    unique = []
    for embedding in embeddings:
        key = np.asarray(embedding.embedding, dtype=np.float32).tobytes()
        if key in seen:
            continue
        seen.add(key)
        unique.append(embedding)
    return unique


class SqlKnownPeopleRegistry(KnownPeopleRegistry):
    """Known people stored in a relational database.

    Matching loads every embedding once into a normalized matrix that is
    reused until the registry changes. A match's confidence is the cosine
    similarity of the query to the person's closest embedding.

    Example:
        ```python
        registry = SqlKnownPeopleRegistry(build_engine("sqlite+aiosqlite:///people.sqlite"))
        await registry.initialize()
        matches = await registry.match_face(face.embedding, threshold=0.55)
        ```
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(engine)
        self._index: Optional[_EmbeddingIndex] = None

    async def initialize(self) -> None:
        """Create the registry tables if needed."""
        await init_models(self.engine)

    async def close(self) -> None:
        await self.engine.dispose()

    def _uow(self) -> UnitOfWork:
        return UnitOfWork(self.session_factory())

    def _invalidate(self) -> None:
        self._index = None

    async def _load_index(self) -> _EmbeddingIndex:
        if self._index is not None:
            return self._index
        try:
            async with self._uow() as uow:
                records = await uow.embeddings.list_all()
                vectors: Dict[int, List[np.ndarray]] = {}
                rows: Dict[int, List[int]] = {}
                for position, record in enumerate(records):
                    vector = normalize(np.frombuffer(record.vector, dtype=np.float32))
                    vectors.setdefault(vector.size, []).append(vector)
                    rows.setdefault(vector.size, []).append(position)
                self._index = _EmbeddingIndex(
                    matrices={size: np.stack(group) for size, group in vectors.items()},
                    rows=rows,
                    embedding_ids=[record.id for record in records],
                    person_ids=[record.person_id for record in records],
                    person_names=[record.person.name for record in records],
                )
        except SQLAlchemyError as e:
            logger.error("Failed to load known people embeddings", error=str(e), exc_info=True)
            raise RegistryError(f"Failed to load known people: {e}") from e
        logger.debug("Loaded known people embeddings", embeddings=len(self._index.embedding_ids))
        return self._index

    async def match_face(
        self,
        embedding: np.ndarray,
        threshold: float,
        max_results: int = 1,
    ) -> List[KnownPersonMatch]:
        index = await self._load_index()
        query = normalize(embedding)
        matrix = index.matrices.get(query.size)
        if matrix is None:
            return []

        scores = matrix @ query
        best: Dict[UUID, KnownPersonMatch] = {}
        for row, score in zip(index.rows[query.size], scores):
            confidence = float(max(0.0, min(1.0, score)))
            person_id = index.person_ids[row]
            if person_id not in best or confidence > best[person_id].confidence:
                best[person_id] = KnownPersonMatch(
                    person_id=person_id,
                    person_name=index.person_names[row],
                    confidence=confidence,
                    matched_embedding_id=index.embedding_ids[row],
                )

        matches = sorted(
            (match for match in best.values() if match.confidence >= threshold),
            key=lambda match: -match.confidence,
        )
        return matches[:max_results]

    async def lookup_person(self, person_id: UUID) -> Optional[KnownPerson]:
        try:
            async with self._uow() as uow:
                return _to_domain(await uow.people.get(person_id))
        except PersonNotFoundError:
            return None

    async def find_by_name(self, name: str) -> Optional[KnownPerson]:
        async with self._uow() as uow:
            record = await uow.people.get_by_name(name)
            return _to_domain(record) if record else None

    async def list_people(self) -> List[KnownPerson]:
        async with self._uow() as uow:
            return [_to_domain(record) for record in await uow.people.list_all()]

    async def add_person(
        self,
        name: str,
        embeddings: List[PersonEmbedding],
        role: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> KnownPerson:
        try:
            async with self._uow() as uow:
                record = await uow.people.create(name, role=role, notes=notes)
                record.embeddings.extend(_to_embedding_record(e) for e in _dedupe(embeddings))
                await uow.people.flush()
                person = _to_domain(record)
        except SQLAlchemyError as e:
            logger.error("Failed to add known person", name=name, error=str(e), exc_info=True)
            raise RegistryError(f"Failed to add person {name}: {e}") from e
        self._invalidate()
        logger.info("Added known person", name=person.name, embeddings=len(person.embeddings))
        return person

    async def add_embeddings(self, person_id: UUID, embeddings: List[PersonEmbedding]) -> int:
        async with self._uow() as uow:
            record = await uow.people.get(person_id)
            new = _dedupe(embeddings, [e.vector for e in record.embeddings])
            record.embeddings.extend(_to_embedding_record(e) for e in new)
            if new:
                record.updated_at = datetime.now(timezone.utc)
            await uow.people.flush()
        if new:
            self._invalidate()
        logger.debug("Added embeddings to known person", person_id=str(person_id), added=len(new))
        return len(new)

    async def check_for_duplicate(
        self,
        name: str,
        embedding: Optional[np.ndarray] = None,
        threshold: float = DUPLICATE_FACE_THRESHOLD,
    ) -> DuplicateCheck:
        """Check whether a person with this name or face is already registered."""
        by_name = await self.find_by_name(name)
        face_match = None
        if embedding is not None:
            matches = await self.match_face(embedding, threshold=threshold, max_results=1)
            face_match = matches[0] if matches else None

        if by_name is not None and face_match is not None and face_match.person_id == by_name.id:
            return DuplicateCheck(kind=DuplicateKind.BOTH, person=by_name, confidence=face_match.confidence)
        if by_name is not None:
            return DuplicateCheck(kind=DuplicateKind.NAME, person=by_name)
        if face_match is not None:
            return DuplicateCheck(
                kind=DuplicateKind.FACE,
                person=await self.lookup_person(face_match.person_id),
                confidence=face_match.confidence,
            )
        return DuplicateCheck()

    async def add_or_merge_person(
        self,
        name: str,
        embeddings: List[PersonEmbedding],
        role: Optional[str] = None,
        duplicate: Optional[DuplicateCheck] = None,
    ) -> KnownPerson:
        """Add a new person, or add the embeddings to the duplicate found for it."""
        if duplicate is None:
            duplicate = await self.check_for_duplicate(name, embeddings[0].embedding if embeddings else None)
        if not duplicate.is_duplicate or duplicate.person is None:
            return await self.add_person(name, embeddings, role=role)
        await self.add_embeddings(duplicate.person.id, embeddings)
        return await self.lookup_person(duplicate.person.id)

    async def merge_people(self, source_id: UUID, target_id: UUID) -> KnownPerson:
        """Move the source person's distinct embeddings to the target and delete the source."""
        if source_id == target_id:
            raise RegistryError("Cannot merge a person into itself", details={"person_id": str(source_id)})
        async with self._uow() as uow:
            source = await uow.people.get(source_id)
            target = await uow.people.get(target_id)
            existing = {e.vector for e in target.embeddings}
            for embedding in source.embeddings:
                if embedding.vector in existing:
                    continue
                existing.add(embedding.vector)
                target.embeddings.append(
                    PersonEmbeddingRecord(
                        vector=embedding.vector,
                        dimension=embedding.dimension,
                        source_description=embedding.source_description,
                        recognition_mode=embedding.recognition_mode,
                        added_at=embedding.added_at,
                    )
                )
            target.updated_at = datetime.now(timezone.utc)
            await uow.people.flush()
            await uow.people.delete(source_id)
            merged = _to_domain(target)
        self._invalidate()
        logger.info("Merged known people", source_id=str(source_id), target=merged.name)
        return merged

    async def update_person(
        self,
        person_id: UUID,
        name: Optional[str] = None,
        role: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> KnownPerson:
        async with self._uow() as uow:
            record = await uow.people.get(person_id)
            if name is not None and name.strip():
                record.name = name.strip()
            if role is not None:
                record.role = role or None
            if notes is not None:
                record.notes = notes or None
            record.updated_at = datetime.now(timezone.utc)
            await uow.people.flush()
            person = _to_domain(record)
        self._invalidate()
        return person

    async def remove_embedding(self, person_id: UUID, embedding_id: UUID) -> bool:
        async with self._uow() as uow:
            removed = await uow.embeddings.delete(embedding_id, person_id)
        if removed:
            self._invalidate()
        return removed

    async def remove_person(self, person_id: UUID) -> None:
        async with self._uow() as uow:
            await uow.people.delete(person_id)
        self._invalidate()
        logger.info("Removed known person", person_id=str(person_id))

    async def statistics(self) -> Dict[str, int]:
        async with self._uow() as uow:
            return {
                "people": await uow.people.count(),
                "embeddings": await uow.embeddings.count(),
            }
