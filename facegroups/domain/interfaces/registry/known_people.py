"""Known people registry interface."""
from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

import numpy as np

from ...entities.person import KnownPerson, PersonEmbedding
from ...value_objects.recognition import KnownPersonMatch


class KnownPeopleRegistry(ABC):
    """Interface for the cross-folder registry of named people."""

    @abstractmethod
    async def match_face(
        self,
        embedding: np.ndarray,
        threshold: float,
        max_results: int = 1,
    ) -> List[KnownPersonMatch]:
        """
        Find known people matching a face embedding.

        Args:
            embedding: Face-only query embedding
            threshold: Minimum confidence (0-1) a match must reach
            max_results: Maximum number of people returned

        Returns:
            Matches ranked by descending confidence, one per person
        """
        pass

    @abstractmethod
    async def lookup_person(self, person_id: UUID) -> Optional[KnownPerson]:
        pass

    @abstractmethod
    async def find_by_name(self, name: str) -> Optional[KnownPerson]:
        """Find a person by name, ignoring case and surrounding whitespace."""
        pass

    @abstractmethod
    async def add_person(
        self,
        name: str,
        embeddings: List[PersonEmbedding],
        role: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> KnownPerson:
        pass

    @abstractmethod
    async def add_embeddings(self, person_id: UUID, embeddings: List[PersonEmbedding]) -> int:
        """
        Add embeddings to a person, skipping near-duplicates.

        Returns:
            Number of embeddings actually added

        Raises:
            PersonNotFoundError: If the person does not exist
        """
        pass
