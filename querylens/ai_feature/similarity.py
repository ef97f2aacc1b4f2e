"""
SIMILARITY MODULE - Rank stored schema vectors against a query vector

Linear scan over every candidate, scored with cosine similarity:

    cos(a, b) = (a . b) / (|a| * |b|)

A zero-length vector has no direction, its similarity to anything is 0.
"""

import math
from typing import Callable, List, Sequence, Tuple, TypeVar

from querylens.core.errors import DimensionMismatch

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors, in [-1, 1].

    Raises:
        DimensionMismatch: if the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatch(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Rounding can push parallel vectors a hair past 1
    return max(-1.0, min(1.0, score))


def score(
    query_vector: Sequence[float],
    candidates: Sequence[T],
    top_k: int,
    vector_of: Callable[[T], Sequence[float]],
) -> List[Tuple[T, float]]:
    """
    Score every candidate and keep the best `top_k` with their similarity.

    The sort is stable, so equal scores keep input order. `top_k` is clamped
    to [0, len(candidates)].
    """
    limit = max(0, min(top_k, len(candidates)))
    if limit == 0:
        return []

    scored = [(candidate, cosine_similarity(query_vector, vector_of(candidate))) for candidate in candidates]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]


def rank(
    query_vector: Sequence[float],
    candidates: Sequence[T],
    top_k: int,
    vector_of: Callable[[T], Sequence[float]] = lambda candidate: candidate.vector,
) -> List[T]:
    """Candidates ordered by descending similarity, at most `top_k` of them."""
    return [candidate for candidate, _ in score(query_vector, candidates, top_k, vector_of)]
