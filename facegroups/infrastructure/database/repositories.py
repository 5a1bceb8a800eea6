"""Database repositories for the known people registry."""
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from facegroups.core.exceptions import PersonNotFoundError
from facegroups.infrastructure.database.models import KnownPersonRecord, PersonEmbeddingRecord


class PersonRepository:
    """Repository for known person operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def get(self, person_id: UUID) -> KnownPersonRecord:
        """Get a person with its embeddings.

        Raises:
            PersonNotFoundError: If the person does not exist
        """
        stmt = (
            select(KnownPersonRecord)
            .where(KnownPersonRecord.id == person_id)
            .options(selectinload(KnownPersonRecord.embeddings))
        )
        result = await self._session.execute(stmt)
        person = result.scalar_one_or_none()

        if not person:
            raise PersonNotFoundError(f"Person not found: {person_id}", details={"person_id": str(person_id)})

        return person

    async def get_by_name(self, name: str) -> Optional[KnownPersonRecord]:
        """Get the first person whose name matches, ignoring case and outer spaces."""
        stmt = (
            select(KnownPersonRecord)
            .where(func.lower(func.trim(KnownPersonRecord.name)) == name.strip().lower())
            .options(selectinload(KnownPersonRecord.embeddings))
            .order_by(KnownPersonRecord.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_all(self) -> List[KnownPersonRecord]:
        stmt = (
            select(KnownPersonRecord)
            .options(selectinload(KnownPersonRecord.embeddings))
            .order_by(func.lower(KnownPersonRecord.name))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def create(
        self,
        name: str,
        role: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> KnownPersonRecord:
        person = KnownPersonRecord(name=name.strip(), role=role, notes=notes, embeddings=[])
        self._session.add(person)
        await self._session.flush()
        return person

    async def delete(self, person_id: UUID) -> None:
        person = await self.get(person_id)
        await self._session.delete(person)
        await self._session.flush()

    async def flush(self) -> None:
        await self._session.flush()

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(KnownPersonRecord))
        return int(result.scalar_one())


class EmbeddingRepository:
    """Repository for person embedding operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository.

        Args:
            session: Database session
        """
        self._session = session

    async def list_all(self) -> List[PersonEmbeddingRecord]:
        """All embeddings with their person loaded, for match caching."""
        stmt = select(PersonEmbeddingRecord).options(selectinload(PersonEmbeddingRecord.person))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete(self, embedding_id: UUID, person_id: UUID) -> bool:
        stmt = delete(PersonEmbeddingRecord).where(
            PersonEmbeddingRecord.id == embedding_id,
            PersonEmbeddingRecord.person_id == person_id,
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(PersonEmbeddingRecord))
        return int(result.scalar_one())
