import math

import pytest

from querylens.ai_feature.similarity import cosine_similarity, rank, score
from querylens.core.errors import DimensionMismatch


def test_identical_vectors_score_one():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)


def test_orthogonal_vectors_score_zero():
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0


def test_opposite_vectors_score_minus_one():
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)


def test_zero_vector_scores_zero():
    """A zero vector has no direction, no division by zero"""
    assert cosine_similarity([0.0, 0.0], [3.0, 4.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [0.0, 0.0]) == 0.0


def test_dimension_mismatch_raises():
    with pytest.raises(DimensionMismatch) as error:
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])
    assert error.value.expected == 2
    assert error.value.actual == 3


def test_score_is_clamped_to_unit_range():
    value = cosine_similarity([0.1] * 1536, [0.1] * 1536)
    assert -1.0 <= value <= 1.0
    assert not math.isnan(value)


def test_rank_orders_by_descending_similarity():
    candidates = [("far", [0.0, 1.0]), ("close", [1.0, 0.1]), ("middle", [1.0, 1.0])]
    ranked = rank([1.0, 0.0], candidates, top_k=3, vector_of=lambda c: c[1])
    assert [name for name, _ in ranked] == ["close", "middle", "far"]


def test_rank_keeps_input_order_on_ties():
    candidates = [("first", [1.0, 0.0]), ("second", [2.0, 0.0]), ("third", [3.0, 0.0])]
    ranked = rank([1.0, 0.0], candidates, top_k=3, vector_of=lambda c: c[1])
    assert [name for name, _ in ranked] == ["first", "second", "third"]


def test_top_k_is_clamped():
    candidates = [("a", [1.0]), ("b", [1.0])]
    assert len(rank([1.0], candidates, top_k=10, vector_of=lambda c: c[1])) == 2
    assert rank([1.0], candidates, top_k=0, vector_of=lambda c: c[1]) == []
    assert rank([1.0], candidates, top_k=-3, vector_of=lambda c: c[1]) == []
    assert rank([1.0], [], top_k=5, vector_of=lambda c: c[1]) == []


def test_score_returns_similarity_with_candidate():
    scored = score([1.0, 0.0], [("x", [1.0, 1.0])], top_k=1, vector_of=lambda c: c[1])
    assert scored[0][0] == ("x", [1.0, 1.0])
    assert scored[0][1] == pytest.approx(1 / math.sqrt(2))


@pytest.mark.parametrize(
    "a, b",
    [
        ([1.0, 2.0, 3.0], [3.0, -1.0, 0.5]),
        ([0.2, 0.0], [0.0, 0.0]),
        ([-4.0, 2.0, 1.0], [1.0, 1.0, 1.0]),
    ],
)
def test_similarity_is_symmetric(a, b):
    assert cosine_similarity(a, b) == cosine_similarity(b, a)
