"""Merge and refinement suggestions between face groups."""
from itertools import combinations
from typing import FrozenSet, Iterable, List, Sequence, Set
from uuid import UUID

from facegroups.domain.entities.face import DetectedFace, FaceGroup
from facegroups.domain.value_objects.recognition import MergeSuggestion, RecognitionConfig
from facegroups.services.similarity import face_similarity


def _representatives(groups: Sequence[FaceGroup], faces: Sequence[DetectedFace]):
    index = {face.id: face for face in faces}
    return [
        (group, index[group.representative_face_id])
        for group in groups
        if group.representative_face_id in index
    ]


def _by_similarity(suggestions: Iterable[MergeSuggestion]) -> List[MergeSuggestion]:
    return sorted(suggestions, key=lambda s: -s.similarity)


def compute_merge_suggestions(
    groups: Sequence[FaceGroup],
    faces: Sequence[DetectedFace],
    threshold: float,
    config: RecognitionConfig,
) -> List[MergeSuggestion]:
    """Suggest every pair of groups whose representatives are at least ``threshold`` similar."""
    suggestions = []
    for (first, first_face), (second, second_face) in combinations(_representatives(groups, faces), 2):
        similarity = face_similarity(first_face, second_face, config)
        if similarity >= threshold:
            suggestions.append(MergeSuggestion(group1_id=first.id, group2_id=second.id, similarity=similarity))
    return _by_similarity(suggestions)


def compute_refinement_suggestions(
    groups: Sequence[FaceGroup],
    faces: Sequence[DetectedFace],
    threshold: float,
    config: RecognitionConfig,
    existing: Sequence[MergeSuggestion] = (),
) -> List[MergeSuggestion]:
    """Suggest named/unnamed group pairs, added to ``existing`` without duplicates.

    The named group is always ``group1`` so that applying the suggestion
    merges the unnamed group into the named one.
    """
    seen: Set[FrozenSet[UUID]] = {suggestion.pair for suggestion in existing}
    reps = _representatives(groups, faces)
    named = [(g, f) for g, f in reps if g.name]
    unnamed = [(g, f) for g, f in reps if not g.name]

    added = []
    for anchor, anchor_face in named:
        for group, face in unnamed:
            suggestion = MergeSuggestion(
                group1_id=anchor.id,
                group2_id=group.id,
                similarity=face_similarity(anchor_face, face, config),
            )
            if suggestion.similarity < threshold or suggestion.pair in seen:
                continue
            seen.add(suggestion.pair)
            added.append(suggestion)
    return _by_similarity(list(existing) + added)
