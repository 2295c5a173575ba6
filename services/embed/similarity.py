"""
Similarity Engine
Cosine similarity between ticket embeddings
"""

from typing import Mapping, Sequence

import numpy as np

# Minimum cosine similarity for a ticket to count as related to a seed
RELATED_THRESHOLD = 0.75


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors, in [-1, 1].

    A zero vector is similar to nothing and scores 0.0.

    Raises:
        ValueError: if the vectors have different lengths
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors must have the same length ({va.shape[0]} != {vb.shape[0]})")

    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def _normalized_matrix(vectors: list[Sequence[float]]) -> np.ndarray:
    matrix = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    # Zero rows stay zero, so they score 0.0 against everything
    norms[norms == 0] = 1.0
    return matrix / norms


def find_related(
    seeds: Mapping[str, Sequence[float]],
    candidates: Mapping[str, Sequence[float]],
    threshold: float = RELATED_THRESHOLD,
) -> list[tuple[str, float]]:
    """
    Find candidates whose similarity with any seed reaches the threshold.

    Args:
        seeds: Seed ticket id -> vector
        candidates: Candidate ticket id -> vector
        threshold: Minimum cosine similarity

    Returns:
        (candidate id, best score) pairs, best score first
    """
    if not seeds or not candidates:
        return []

    seed_vectors = list(seeds.values())
    candidate_ids = list(candidates.keys())
    candidate_vectors = list(candidates.values())

    dims = {len(v) for v in seed_vectors} | {len(v) for v in candidate_vectors}
    if len(dims) > 1:
        raise ValueError(f"Embedding dimensions differ: {sorted(dims)}")

    # (candidates x dim) @ (dim x seeds) -> best score per candidate
    scores = _normalized_matrix(candidate_vectors) @ _normalized_matrix(seed_vectors).T
    best = scores.max(axis=1)

    related = [
        (ticket_id, float(score))
        for ticket_id, score in zip(candidate_ids, best)
        if score >= threshold
    ]
    related.sort(key=lambda pair: pair[1], reverse=True)
    return related
