"""Group mutation operations on the folder aggregate.

Every function takes a :class:`FolderFaceData`, leaves it untouched and
returns a new aggregate. A request that would break the aggregate (merging a
group into itself, moving to an unknown group, ungrouping a solo face, ...)
raises :class:`InvalidMutationError` and produces no new state.

Invariants kept by all operations:
    - ``face.group_id`` matches the single group listing the face
    - no group is empty
    - a group's representative is one of its members
"""
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
from uuid import UUID

from facegroups.core.exceptions import InvalidMutationError
from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import FaceGroup
from facegroups.domain.entities.folder import FolderFaceData

logger = get_logger(__name__)


def sorted_groups(groups: Sequence[FaceGroup]) -> List[FaceGroup]:
    """Display order: named groups alphabetically, then unnamed groups by size."""
    named = sorted((g for g in groups if g.name), key=lambda g: g.name.lower())
    unnamed = sorted((g for g in groups if not g.name), key=lambda g: -len(g.face_ids))
    return named + unnamed


def working_copy(data: FolderFaceData) -> FolderFaceData:
    """Copy an aggregate deeply enough for the mutations below.

    Faces are copied shallowly since only ``group_id`` is ever reassigned;
    embeddings are shared with the input.
    """
    return data.model_copy(
        update={
            "faces": [face.model_copy() for face in data.faces],
            "groups": [group.model_copy(deep=True) for group in data.groups],
            "scanned_files": dict(data.scanned_files),
            "known_person_matches": dict(data.known_person_matches),
        }
    )


def _drop_groups(data: FolderFaceData, group_ids: Set[UUID]) -> None:
    if not group_ids:
        return
    data.groups = [group for group in data.groups if group.id not in group_ids]
    for group_id in group_ids:
        data.known_person_matches.pop(str(group_id), None)


def _detach(data: FolderFaceData, face_ids: Set[UUID]) -> Set[UUID]:
    """Remove faces from their groups in place; returns ids of emptied groups."""
    emptied: Set[UUID] = set()
    for group in data.groups:
        if not any(face_id in face_ids for face_id in group.face_ids):
            continue
        group.face_ids = [face_id for face_id in group.face_ids if face_id not in face_ids]
        if not group.face_ids:
            emptied.add(group.id)
        elif group.representative_face_id not in group.face_ids:
            group.representative_face_id = group.face_ids[0]
    for face in data.faces:
        if face.id in face_ids:
            face.group_id = None
    _drop_groups(data, emptied)
    return emptied


def _attach(data: FolderFaceData, group: FaceGroup, face_ids: Iterable[UUID]) -> None:
    ids = [face_id for face_id in face_ids if face_id not in group.face_ids]
    group.face_ids.extend(ids)
    moved = set(ids)
    for face in data.faces:
        if face.id in moved:
            face.group_id = group.id


def _require_group(data: FolderFaceData, group_id: UUID) -> FaceGroup:
    group = data.get_group(group_id)
    if group is None:
        raise InvalidMutationError("Unknown group", details={"group_id": str(group_id)})
    return group


def _existing_face_ids(data: FolderFaceData, face_ids: Iterable[UUID]) -> List[UUID]:
    index = data.face_index()
    return [face_id for face_id in dict.fromkeys(face_ids) if face_id in index]


def purge_faces(data: FolderFaceData, face_ids: Iterable[UUID]) -> FolderFaceData:
    """Remove faces from the aggregate, cleaning up their groups."""
    doomed = set(face_ids)
    result = working_copy(data)
    _detach(result, doomed)
    result.faces = [face for face in result.faces if face.id not in doomed]
    return result


def merge_groups(data: FolderFaceData, source_id: UUID, target_id: UUID) -> FolderFaceData:
    """Move every member of ``source`` into ``target`` and delete ``source``."""
    if source_id == target_id:
        raise InvalidMutationError("Cannot merge a group into itself", details={"group_id": str(source_id)})
    _require_group(data, source_id)
    _require_group(data, target_id)

    result = working_copy(data)
    source = result.get_group(source_id)
    target = result.get_group(target_id)
    _attach(result, target, source.face_ids)
    _drop_groups(result, {source_id})
    return result


def ungroup_face(data: FolderFaceData, face_id: UUID) -> FolderFaceData:
    """Split one face out of its group into a new solo group."""
    face = data.get_face(face_id)
    if face is None or face.group_id is None:
        raise InvalidMutationError("Face is not grouped", details={"face_id": str(face_id)})
    group = _require_group(data, face.group_id)
    if len(group.face_ids) <= 1:
        raise InvalidMutationError("Face is already alone in its group", details={"face_id": str(face_id)})

    result = working_copy(data)
    _detach(result, {face_id})
    solo = FaceGroup.solo(face_id)
    result.groups.append(solo)
    _attach(result, solo, [face_id])
    return result


def merge_multiple_groups(data: FolderFaceData, group_ids: Sequence[UUID]) -> FolderFaceData:
    """Merge several groups into the first of them in display order."""
    selected = set(group_ids)
    ordered = [group for group in sorted_groups(data.groups) if group.id in selected]
    if len(ordered) < 2:
        raise InvalidMutationError("Need at least two groups to merge", details={"count": len(ordered)})

    target = ordered[0]
    result = data
    for group in ordered[1:]:
        result = merge_groups(result, group.id, target.id)
    return result


def ungroup_multiple(data: FolderFaceData, group_ids: Sequence[UUID]) -> FolderFaceData:
    """Keep each group's first member and spin every other member off on its own."""
    index = data.group_index()
    selected = [
        group_id
        for group_id in dict.fromkeys(group_ids)
        if group_id in index and len(index[group_id].face_ids) > 1
    ]
    if not selected:
        raise InvalidMutationError("No selected group has more than one member")

    result = working_copy(data)
    for group_id in selected:
        group = result.get_group(group_id)
        kept, *others = group.face_ids
        group.face_ids = [kept]
        group.representative_face_id = kept
        for face_id in others:
            solo = FaceGroup.solo(face_id)
            result.groups.append(solo)
            _attach(result, solo, [face_id])
    return result


def move_faces(data: FolderFaceData, face_ids: Sequence[UUID], target_id: UUID) -> FolderFaceData:
    """Move faces into a group; faces already in the target are ignored."""
    _require_group(data, target_id)
    index = data.face_index()
    moving = [
        face_id
        for face_id in _existing_face_ids(data, face_ids)
        if index[face_id].group_id != target_id
    ]
    if not moving:
        raise InvalidMutationError("No faces to move", details={"target_id": str(target_id)})

    result = working_copy(data)
    _detach(result, set(moving))
    _attach(result, result.get_group(target_id), moving)
    return result


def move_face(data: FolderFaceData, face_id: UUID, target_id: UUID) -> FolderFaceData:
    face = data.get_face(face_id)
    if face is None:
        raise InvalidMutationError("Unknown face", details={"face_id": str(face_id)})
    if face.group_id == target_id:
        raise InvalidMutationError("Face is already in the target group", details={"face_id": str(face_id)})
    return move_faces(data, [face_id], target_id)


def create_new_group(data: FolderFaceData, face_ids: Sequence[UUID]) -> Tuple[FolderFaceData, UUID]:
    """Put faces into a brand new group placed next to their previous group.

    The new group goes right after the earliest listed group the faces came
    from, or into its slot when that group was emptied by the move.

    Returns:
        The new aggregate and the id of the created group
    """
    moving = _existing_face_ids(data, face_ids)
    if not moving:
        raise InvalidMutationError("No faces for the new group")

    index = data.face_index()
    prior = {index[face_id].group_id for face_id in moving} - {None}
    positions = [i for i, group in enumerate(data.groups) if group.id in prior]
    anchor_position: Optional[int] = min(positions) if positions else None
    anchor_id = data.groups[anchor_position].id if anchor_position is not None else None

    result = working_copy(data)
    emptied = _detach(result, set(moving))
    group = FaceGroup(representative_face_id=moving[0], face_ids=[])

    if anchor_id is None:
        result.groups.append(group)
    elif anchor_id in emptied:
        result.groups.insert(anchor_position, group)
    else:
        position = next(i for i, g in enumerate(result.groups) if g.id == anchor_id)
        result.groups.insert(position + 1, group)
    _attach(result, group, moving)
    return result, group.id


def delete_faces(data: FolderFaceData, face_ids: Sequence[UUID]) -> FolderFaceData:
    existing = _existing_face_ids(data, face_ids)
    if not existing:
        raise InvalidMutationError("No faces to delete")
    return purge_faces(data, existing)


def delete_group(data: FolderFaceData, group_id: UUID) -> Tuple[FolderFaceData, List[UUID], List[str]]:
    """Delete a group and all of its faces.

    Returns:
        The new aggregate, the deleted face ids and the distinct source image paths
    """
    group = _require_group(data, group_id)
    face_ids = list(group.face_ids)
    index = data.face_index()
    image_paths = list(dict.fromkeys(index[face_id].image_path for face_id in face_ids if face_id in index))
    return purge_faces(data, face_ids), face_ids, image_paths


def name_group(data: FolderFaceData, group_id: UUID, name: Optional[str]) -> FolderFaceData:
    """Set or clear (empty name) a group's name."""
    _require_group(data, group_id)
    cleaned = (name or "").strip() or None
    result = working_copy(data)
    result.get_group(group_id).name = cleaned
    return result


def set_representative(data: FolderFaceData, group_id: UUID, face_id: UUID) -> FolderFaceData:
    group = _require_group(data, group_id)
    if face_id not in group.face_ids:
        raise InvalidMutationError(
            "Representative must be a member of the group",
            details={"group_id": str(group_id), "face_id": str(face_id)},
        )
    result = working_copy(data)
    result.get_group(group_id).representative_face_id = face_id
    return result


def find_inconsistencies(data: FolderFaceData) -> List[str]:
    """List violations of the aggregate's structural invariants."""
    problems: List[str] = []
    membership: Dict[UUID, UUID] = {}
    face_ids = {face.id for face in data.faces}
    for group in data.groups:
        if not group.face_ids:
            problems.append(f"group {group.id} is empty")
        if group.representative_face_id not in group.face_ids:
            problems.append(f"group {group.id} representative is not a member")
        for face_id in group.face_ids:
            if face_id not in face_ids:
                problems.append(f"group {group.id} lists unknown face {face_id}")
            if face_id in membership:
                problems.append(f"face {face_id} is listed by several groups")
            membership[face_id] = group.id
    for face in data.faces:
        if membership.get(face.id) != face.group_id:
            problems.append(f"face {face.id} group reference does not match membership")
    return problems
