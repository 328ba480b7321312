"""
Unit tests for the distance/standardization engine.
"""

import numpy as np
import pytest

from gridsubset.distance import (
    iter_chunks,
    pairwise_distances,
    standardize,
    standardized_distance,
)
from gridsubset.utils import ConfigurationError


class TestStandardizedDistance:
    """Scalar distance between two cells."""

    def test_unit_criteria_is_plain_euclidean(self):
        assert standardized_distance([0, 0], [3, 4], [1, 1]) == pytest.approx(5.0)

    def test_criteria_scale_each_variable(self):
        """A difference equal to the criterion contributes exactly 1."""
        d = standardized_distance([0, 0], [3, 4], [3, 4])
        assert d == pytest.approx(np.sqrt(2))

    def test_identical_cells_have_zero_distance(self):
        assert standardized_distance([2.5, -1], [2.5, -1], [0.1, 7]) == 0.0

    def test_vector_length_mismatch_is_fatal(self):
        with pytest.raises(ConfigurationError):
            standardized_distance([0, 0], [1, 1, 1], [1, 1])

    def test_criteria_length_mismatch_is_fatal(self):
        with pytest.raises(ConfigurationError):
            standardized_distance([0, 0], [1, 1], [1])

    @pytest.mark.parametrize("criteria", [[0.0, 1.0], [1.0, -2.0], [np.nan, 1.0]])
    def test_non_positive_criteria_rejected(self, criteria):
        with pytest.raises(ConfigurationError):
            standardized_distance([0, 0], [1, 1], criteria)


class TestStandardize:

    def test_divides_each_column(self):
        values = np.array([[2.0, 100.0], [4.0, 300.0]])
        out = standardize(values, [2.0, 100.0])
        np.testing.assert_allclose(out, [[1.0, 1.0], [2.0, 3.0]])

    def test_single_variable_vector_becomes_column(self):
        out = standardize(np.array([1.0, 2.0, 3.0]), [0.5])
        assert out.shape == (3, 1)
        np.testing.assert_allclose(out[:, 0], [2.0, 4.0, 6.0])

    def test_does_not_modify_input(self):
        values = np.array([[2.0, 4.0]])
        standardize(values, [2.0, 2.0])
        np.testing.assert_array_equal(values, [[2.0, 4.0]])


class TestPairwiseDistances:

    def test_matches_bruteforce(self):
        rng = np.random.default_rng(0)
        targets = rng.normal(size=(25, 3))
        subset = targets[[3, 10, 17]]

        expected = np.linalg.norm(targets[:, None, :] - subset[None, :, :], axis=2)
        np.testing.assert_allclose(pairwise_distances(targets, subset), expected)

    def test_chunking_does_not_change_result(self):
        rng = np.random.default_rng(1)
        targets = rng.normal(size=(47, 2))
        subset = targets[:5]

        full = pairwise_distances(targets, subset, chunk_size=1000)
        chunked = pairwise_distances(targets, subset, chunk_size=4)
        np.testing.assert_array_equal(full, chunked)

    def test_dimension_mismatch_is_fatal(self):
        with pytest.raises(ConfigurationError):
            pairwise_distances(np.zeros((4, 2)), np.zeros((2, 3)))

    def test_chunks_cover_all_rows(self):
        chunks = list(iter_chunks(10, 4))
        assert chunks == [(0, 4), (4, 8), (8, 10)]
