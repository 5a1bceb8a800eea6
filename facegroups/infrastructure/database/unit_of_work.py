"""Unit of work pattern implementation."""
from types import TracebackType
from typing import Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession

from facegroups.infrastructure.database.repositories import EmbeddingRepository, PersonRepository


class UnitOfWork:
    """Unit of work for managing registry transactions and repositories.

    Example:
        ```python
        async with UnitOfWork(session_factory()) as uow:
            person = await uow.people.create("Alice")
        # committed here, or rolled back if the block raised
        ```
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize unit of work.

        Args:
            session: Database session
        """
        self._session = session
        self.people = PersonRepository(session)
        self.embeddings = EmbeddingRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        """Commit on success, roll back on error, then close the session."""
        try:
            if exc_type is not None:
                await self.rollback()
            else:
                await self.commit()
        finally:
            await self._session.close()

    async def commit(self) -> None:
        """Commit the current transaction."""
        await self._session.commit()

    async def rollback(self) -> None:
        """Rollback the current transaction."""
        await self._session.rollback()
