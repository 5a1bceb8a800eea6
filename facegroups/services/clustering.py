"""Incremental Chinese Whispers clustering of detected faces.

New faces are clustered against each other and against the faces already
grouped. Grouped faces act as fixed anchors carrying their group id as label,
so existing groups only ever grow: their ids, names and representatives are
never changed by clustering.
"""
from collections import defaultdict
from typing import Dict, Hashable, List, Optional, Sequence
from uuid import UUID

import networkx as nx
import numpy as np

from facegroups.core.logging import get_logger
from facegroups.domain.entities.face import DetectedFace, FaceGroup
from facegroups.domain.value_objects.recognition import RecognitionConfig
from facegroups.services.similarity import primary_similarity, similarity_matrix

logger = get_logger(__name__)

_TIE_EPSILON = 1e-9


def _quality(face: DetectedFace) -> float:
    return 1.0 if face.quality_score is None else face.quality_score


def pairwise_similarities(
    left: Sequence[DetectedFace],
    right: Sequence[DetectedFace],
    config: RecognitionConfig,
) -> np.ndarray:
    """Similarity matrix between two face lists under the configured mode."""
    if not left or not right:
        return np.zeros((len(left), len(right)), dtype=np.float32)

    primary = similarity_matrix(
        np.stack([face.embedding for face in left]),
        np.stack([face.embedding for face in right]),
    )
    if not config.uses_context:
        return primary

    left_mask = np.array([face.context_embedding is not None for face in left])
    right_mask = np.array([face.context_embedding is not None for face in right])
    if not left_mask.any() or not right_mask.any():
        return primary

    context = np.zeros_like(primary)
    left_rows = np.flatnonzero(left_mask)
    right_rows = np.flatnonzero(right_mask)
    context[np.ix_(left_rows, right_rows)] = similarity_matrix(
        np.stack([left[i].context_embedding for i in left_rows]),
        np.stack([right[j].context_embedding for j in right_rows]),
    )
    weight = config.primary_weight
    fused = weight * primary + (1.0 - weight) * context
    return np.where(np.outer(left_mask, right_mask), fused, primary)


def assign_group_ids(faces: Sequence[DetectedFace], groups: Sequence[FaceGroup]) -> List[DetectedFace]:
    """Return copies of ``faces`` whose ``group_id`` follows group membership."""
    membership: Dict[UUID, UUID] = {}
    for group in groups:
        for face_id in group.face_ids:
            membership[face_id] = group.id
    return [
        face if face.group_id == membership.get(face.id)
        else face.model_copy(update={"group_id": membership.get(face.id)})
        for face in faces
    ]


class ClusteringEngine:
    """Chinese Whispers label propagation over a face similarity graph.

    Example:
        ```python
        engine = ClusteringEngine()
        groups = engine.cluster(new_faces, all_faces, data.groups, config)
        faces = assign_group_ids(all_faces, groups)
        ```
    """

    def build_graph(
        self,
        new_faces: Sequence[DetectedFace],
        anchors: Sequence[DetectedFace],
        config: RecognitionConfig,
    ) -> nx.Graph:
        """Build the similarity graph for one clustering pass.

        Nodes are face ids. New faces are always present; an anchor is added
        only once it connects to a new face. Edges join pairs whose similarity
        exceeds the mode's threshold.
        """
        threshold = config.clustering_threshold
        graph = nx.Graph()
        for face in new_faces:
            graph.add_node(face.id, face=face, anchor=False)

        def weight(a: DetectedFace, b: DetectedFace) -> float:
            if config.quality_weighted_edges:
                return _quality(a) * _quality(b)
            return 1.0

        new_scores = pairwise_similarities(new_faces, new_faces, config)
        anchor_scores = pairwise_similarities(new_faces, anchors, config)
        for i, face in enumerate(new_faces):
            for j in range(i + 1, len(new_faces)):
                if new_scores[i, j] > threshold:
                    graph.add_edge(face.id, new_faces[j].id, weight=weight(face, new_faces[j]))
            for j, anchor in enumerate(anchors):
                if anchor_scores[i, j] > threshold:
                    if anchor.id not in graph:
                        graph.add_node(anchor.id, face=anchor, anchor=True)
                    graph.add_edge(face.id, anchor.id, weight=weight(face, anchor))
        return graph

    def propagate(
        self,
        graph: nx.Graph,
        labels: Dict[UUID, Hashable],
        order: Sequence[UUID],
        config: RecognitionConfig,
    ) -> Dict[UUID, Hashable]:
        """Run label propagation for the nodes in ``order``; other labels stay fixed."""
        labels = dict(labels)

        def is_source(node: UUID) -> bool:
            if not config.use_quality_gate:
                return True
            return _quality(graph.nodes[node]["face"]) >= config.quality_gate_threshold

        iterations = 0
        for iterations in range(1, config.max_iterations + 1):
            changed = 0
            for node in order:
                tally: Dict[Hashable, float] = defaultdict(float)
                for neighbor in graph.neighbors(node):
                    if is_source(neighbor):
                        tally[labels[neighbor]] += graph[node][neighbor].get("weight", 1.0)
                if not tally:
                    continue

                best_weight = max(tally.values())
                best = [label for label, total in tally.items() if total >= best_weight - _TIE_EPSILON]
                if labels[node] in best:
                    continue
                labels[node] = best[0]
                changed += 1
            if changed == 0:
                break

        logger.debug("Label propagation finished", iterations=iterations, nodes=len(order))
        return labels

    def cluster(
        self,
        new_faces: Sequence[DetectedFace],
        all_faces: Sequence[DetectedFace],
        existing_groups: Sequence[FaceGroup],
        config: RecognitionConfig,
    ) -> List[FaceGroup]:
        """Assign ungrouped faces to existing or new groups.

        Args:
            new_faces: Faces to cluster; faces that already have a group are skipped
            all_faces: Every face of the folder, used to find anchors
            existing_groups: Groups built so far; they are copied, never modified
            config: Recognition parameters

        Returns:
            New group list: existing groups (extended with new members) in their
            original order followed by newly created groups
        """
        groups = [group.model_copy(deep=True) for group in existing_groups]
        group_index = {group.id: group for group in groups}

        unique = {face.id: face for face in new_faces}
        pending = [face for face in unique.values() if face.group_id is None]
        if not pending:
            return groups

        pending_ids = {face.id for face in pending}
        anchors = [
            face for face in all_faces
            if face.id not in pending_ids and face.group_id in group_index
        ]

        graph = self.build_graph(pending, anchors, config)
        labels: Dict[UUID, Hashable] = {face.id: face.id for face in pending}
        for node, attrs in graph.nodes(data=True):
            if attrs["anchor"]:
                labels[node] = attrs["face"].group_id
        labels = self.propagate(graph, labels, [face.id for face in pending], config)

        created: Dict[Hashable, FaceGroup] = {}
        for face in pending:
            label = labels[face.id]
            if label in group_index:
                group_index[label].face_ids.append(face.id)
            elif label in created:
                created[label].face_ids.append(face.id)
            else:
                created[label] = FaceGroup.solo(face.id)
        new_groups = list(created.values())

        if config.uses_context and config.second_pass_attach_to_existing:
            faces_by_id = {face.id: face for face in all_faces}
            faces_by_id.update({face.id: face for face in pending})
            new_groups = self._attach_singletons(groups, new_groups, faces_by_id, config)

        logger.debug(
            "Clustered faces",
            new_faces=len(pending),
            anchors=graph.number_of_nodes() - len(pending),
            edges=graph.number_of_edges(),
            groups_extended=sum(1 for label in set(labels.values()) if label in group_index),
            groups_created=len(new_groups),
        )
        return groups + new_groups

    def _attach_singletons(
        self,
        groups: List[FaceGroup],
        new_groups: List[FaceGroup],
        faces_by_id: Dict[UUID, DetectedFace],
        config: RecognitionConfig,
    ) -> List[FaceGroup]:
        """Attach faces left alone by the fused pass to a close multi-member group.

        Uses face-only similarity averaged over the group's members; a face is
        attached only when the best average exceeds the primary threshold.
        """
        singles = [group for group in new_groups if len(group.face_ids) == 1]
        kept = list(new_groups)
        for single in singles:
            face = faces_by_id[single.face_ids[0]]
            best: Optional[FaceGroup] = None
            best_score = config.primary_threshold
            for candidate in groups + kept:
                if candidate is single or len(candidate.face_ids) < 2:
                    continue
                members = [faces_by_id[fid] for fid in candidate.face_ids if fid in faces_by_id]
                if not members:
                    continue
                score = float(np.mean([primary_similarity(face, member) for member in members]))
                if score > best_score:
                    best, best_score = candidate, score
            if best is not None:
                best.face_ids.append(face.id)
                kept.remove(single)
                logger.debug("Attached singleton face", face_id=str(face.id), group_id=str(best.id), score=best_score)
        return kept
