"""Automatic labelling of face groups from the known people registry."""
from typing import Dict, List, NamedTuple, Optional
from uuid import UUID

from facegroups.core.exceptions import RegistryError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import FaceGroup
from facegroups.domain.entities.folder import FolderFaceData
from facegroups.domain.interfaces.registry.known_people import KnownPeopleRegistry
from facegroups.domain.value_objects.recognition import (
    KnownPersonMatch,
    KnownPersonMatchRecord,
    RecognitionConfig,
)
from facegroups.services.mutations import merge_groups, name_group, working_copy

logger = get_logger(__name__)


def same_name(first: Optional[str], second: Optional[str]) -> bool:
    """Compare person names ignoring case and surrounding whitespace."""
    if not first or not second:
        return False
    return first.strip().lower() == second.strip().lower()


def verified_match(data: FolderFaceData, group_id: UUID) -> Optional[KnownPersonMatchRecord]:
    """Return a group's match record while the group still carries the matched name."""
    record = data.known_person_matches.get(str(group_id))
    group = data.get_group(group_id)
    if record is None or group is None:
        return None
    if not same_name(group.name, record.person_name):
        return None
    return record


class _Candidate(NamedTuple):
    group: FaceGroup
    match: KnownPersonMatch
    position: int


class KnownPersonMatcher:
    """Names groups after registry matches and folds duplicate groups together.

    Every unnamed group, and every named group whose name is the matched
    person's, is looked up by its representative face. When several groups
    match the same person the best one becomes the merge target: a named group
    if there is one, otherwise the most confident match. Every other matching
    group, unnamed or carrying the same name, is merged into it.
    """

    def __init__(self, registry: KnownPeopleRegistry) -> None:
        self.registry = registry

    async def _lookup(self, data: FolderFaceData, config: RecognitionConfig) -> Dict[UUID, List[_Candidate]]:
        faces = data.face_index()
        by_person: Dict[UUID, List[_Candidate]] = {}
        for position, group in enumerate(data.groups):
            representative = faces.get(group.representative_face_id)
            if representative is None:
                continue
            try:
                matches = await self.registry.match_face(
                    representative.embedding,
                    threshold=config.known_people_min_confidence,
                    max_results=1,
                )
            except RegistryError as e:
                logger.warning("Known people lookup failed", group_id=str(group.id), error=str(e))
                continue
            if not matches:
                continue
            match = matches[0]
            if group.name and not same_name(group.name, match.person_name):
                continue
            by_person.setdefault(match.person_id, []).append(_Candidate(group, match, position))
        return by_person

    async def match_known_people(self, data: FolderFaceData, config: RecognitionConfig) -> FolderFaceData:
        """Match groups against the registry and return the updated aggregate."""
        by_person = await self._lookup(data, config)
        result = working_copy(data)

        for person_id, candidates in by_person.items():
            ranked = sorted(
                candidates,
                key=lambda c: (not c.group.name, -c.match.confidence, c.position),
            )
            target, others = ranked[0], ranked[1:]
            person_name = target.match.person_name

            if not same_name(target.group.name, person_name):
                result = name_group(result, target.group.id, person_name)
            for other in others:
                result = merge_groups(result, other.group.id, target.group.id)

            result.known_person_matches[str(target.group.id)] = KnownPersonMatchRecord(
                person_id=person_id,
                person_name=person_name,
                confidence=target.match.confidence,
            )
            logger.info(
                "Matched known person",
                person=person_name,
                group_id=str(target.group.id),
                confidence=round(target.match.confidence, 3),
                merged=len(others),
            )
        return result
