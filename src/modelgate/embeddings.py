"""Vector math over embeddings: normalization, similarity and top-K search.

All functions are pure and operate on plain sequences of floats.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import math
from typing import Any

from modelgate.errors import EmbeddingsError

EmbeddingVector = Sequence[float]

DEFAULT_TOP_K = 5


@dataclass(frozen=True)
class EmbeddingCandidate:
    """A stored embedding with caller-defined metadata."""

    embedding: EmbeddingVector
    metadata: Any = None


@dataclass(frozen=True)
class SimilarityMatch:
    similarity: float
    metadata: Any = None


def magnitude(vector: EmbeddingVector) -> float:
    """Return the Euclidean length of ``vector``."""
    return math.sqrt(math.fsum(x * x for x in vector))


def normalize(vector: EmbeddingVector) -> list[float]:
    """Scale ``vector`` to unit length.

    Raises:
        EmbeddingsError: If the vector has zero magnitude.
    """
    norm = magnitude(vector)
    if norm == 0.0:
        raise EmbeddingsError(
            "Cannot normalize a zero-magnitude vector",
            hint="Check that the embedding is not all zeros.",
        )
    return [x / norm for x in vector]


def cosine_similarity(a: EmbeddingVector, b: EmbeddingVector) -> float:
    """Return the cosine of the angle between ``a`` and ``b``.

    1.0 for identical direction, 0.0 for orthogonal vectors. A zero-magnitude
    operand has no direction and yields 0.0.
    """
    _check_same_length(a, b)
    dot = math.fsum(x * y for x, y in zip(a, b))
    denominator = magnitude(a) * magnitude(b)
    if denominator == 0.0:
        return 0.0
    # Rounding can push the ratio just past +/-1.
    return max(-1.0, min(1.0, dot / denominator))


def euclidean_distance(a: EmbeddingVector, b: EmbeddingVector) -> float:
    _check_same_length(a, b)
    return math.sqrt(math.fsum((x - y) ** 2 for x, y in zip(a, b)))


def find_similar_embeddings(
    query: EmbeddingVector,
    candidates: Sequence[EmbeddingCandidate | Mapping[str, Any]],
    top_k: int = DEFAULT_TOP_K,
) -> list[SimilarityMatch]:
    """Rank ``candidates`` by cosine similarity to ``query``.

    Returns at most ``top_k`` matches, most similar first. Ties keep the
    candidates' input order.
    """
    if top_k < 0:
        raise EmbeddingsError(f"top_k must be >= 0, got {top_k}")

    scored = []
    for candidate in candidates:
        embedding, metadata = _unpack_candidate(candidate)
        scored.append(
            SimilarityMatch(
                similarity=cosine_similarity(query, embedding),
                metadata=metadata,
            )
        )
    # sorted() is stable, so equal scores stay in input order.
    scored = sorted(scored, key=lambda match: match.similarity, reverse=True)
    return scored[:top_k]


def _unpack_candidate(
    candidate: EmbeddingCandidate | Mapping[str, Any],
) -> tuple[EmbeddingVector, Any]:
    if isinstance(candidate, EmbeddingCandidate):
        return candidate.embedding, candidate.metadata
    if isinstance(candidate, Mapping) and "embedding" in candidate:
        return candidate["embedding"], candidate.get("metadata")
    raise EmbeddingsError(
        f"Invalid embedding candidate: {type(candidate).__name__}",
        hint="Pass EmbeddingCandidate objects or mappings with an 'embedding' key.",
    )


def _check_same_length(a: EmbeddingVector, b: EmbeddingVector) -> None:
    if len(a) != len(b):
        raise EmbeddingsError(
            f"Vectors must have the same length (got {len(a)} and {len(b)})"
        )
