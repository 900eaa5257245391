"""
Tests for cosine similarity utilities
"""
import pytest
import numpy as np
from smartpair.similarity import cosine, to_unit, similarity_matrix, is_degenerate


def test_cosine_basic():
    """Test cosine of parallel, orthogonal and opposite vectors"""
    assert cosine([1, 0], [2, 0]) == pytest.approx(1.0)
    assert cosine([1, 0], [0, 3]) == pytest.approx(0.0)
    assert cosine([1, 1], [-1, -1]) == pytest.approx(-1.0)


def test_cosine_broken_inputs():
    """Missing, mismatched and zero vectors give 0"""
    assert cosine(None, [1, 0]) == 0.0
    assert cosine([1, 0, 0], [1, 0]) == 0.0
    assert cosine([0, 0], [1, 0]) == 0.0
    assert cosine([], []) == 0.0


def test_to_unit():
    """Test normalisation to unit length"""
    assert to_unit([3, 4]) == pytest.approx([0.6, 0.8])
    assert to_unit([0, 0]) == [0.0, 0.0]


def test_similarity_matrix_missing_rows():
    """Rows for missing vectors stay zero"""
    matrix = similarity_matrix([[1, 0], None, [0, 1]])

    assert matrix.shape == (3, 3)
    assert matrix[0, 0] == pytest.approx(1.0)
    assert matrix[0, 2] == pytest.approx(0.0)
    assert not matrix[1].any()
    assert not matrix[:, 1].any()


def test_is_degenerate():
    """Identical vectors are degenerate, distinct ones are not"""
    same = similarity_matrix([[0.5, 0.5, 0.1]] * 4)
    distinct = similarity_matrix([[1, 0], [0, 1], [0.6, 0.8]])

    assert is_degenerate(same)
    assert not is_degenerate(distinct)
    assert not is_degenerate(np.ones((1, 1)))
