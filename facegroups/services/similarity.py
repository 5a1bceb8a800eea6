"""Embedding similarity helpers shared by clustering, suggestions and matching."""
from typing import Optional

import numpy as np

from facegroups.domain.entities.face import DetectedFace
from facegroups.domain.value_objects.recognition import RecognitionConfig


def normalize(embedding: np.ndarray) -> np.ndarray:
    """L2-normalize a vector, leaving zero vectors untouched."""
    vector = np.asarray(embedding, dtype=np.float32)
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def cosine_similarity(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is missing or mismatched."""
    if a is None or b is None or a.shape != b.shape:
        return 0.0
    return float(np.dot(normalize(a), normalize(b)))


def primary_similarity(a: DetectedFace, b: DetectedFace) -> float:
    return cosine_similarity(a.embedding, b.embedding)


def face_similarity(a: DetectedFace, b: DetectedFace, config: RecognitionConfig) -> float:
    """Similarity of two faces under the configured recognition mode.

    In face+clothing mode the face and context similarities are fused as
    ``w * face + (1 - w) * context``; when either face lacks a context
    embedding the face similarity is used alone.
    """
    face_score = primary_similarity(a, b)
    if not config.uses_context:
        return face_score
    if a.context_embedding is None or b.context_embedding is None:
        return face_score
    context_score = cosine_similarity(a.context_embedding, b.context_embedding)
    weight = config.primary_weight
    return weight * face_score + (1.0 - weight) * context_score


def similarity_matrix(embeddings: np.ndarray, others: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarities between the rows of two embedding matrices."""
    left = np.atleast_2d(np.asarray(embeddings, dtype=np.float32))
    right = np.atleast_2d(np.asarray(others, dtype=np.float32))
    left_norms = np.linalg.norm(left, axis=1, keepdims=True)
    right_norms = np.linalg.norm(right, axis=1, keepdims=True)
    left = np.divide(left, left_norms, out=np.zeros_like(left), where=left_norms != 0)
    right = np.divide(right, right_norms, out=np.zeros_like(right), where=right_norms != 0)
    return left @ right.T
