"""
Tests for the Dirichlet diffusion tree prior.

Run: pytest tests/test_ddt.py -v
"""

import numpy as np
import pytest
from scipy.special import gammaln

from ddtlcm.exceptions import NumericDomainError
from ddtlcm.models.ddt import (
    DivergenceFunction,
    divergence_exposure,
    gaussian_logpdf,
    harmonic_number,
    log_ddt_prior,
    log_location_prior,
    log_structure_prior,
)


ITEM_GROUP = np.array([0, 0, 0, 1, 1, 1, 2, 2, 2])


class TestDivergenceFunction:
    """a(t) = c / (1 - t) and its cumulative hazard."""

    def test_inverse_round_trip(self) -> None:
        divergence = DivergenceFunction(0.7)
        t = np.array([0.0, 0.1, 0.5, 0.9])
        np.testing.assert_allclose(divergence.inverse_cumulative(divergence.cumulative(t)), t)

    def test_cumulative_infinite_at_one(self) -> None:
        assert np.isinf(DivergenceFunction(1.0).cumulative(1.0))

    @pytest.mark.parametrize("c", [0.0, -1.0, np.nan])
    def test_rejects_non_positive_c(self, c) -> None:
        with pytest.raises(NumericDomainError):
            DivergenceFunction(c)


class TestHarmonicNumber:

    def test_small_values(self) -> None:
        np.testing.assert_allclose(harmonic_number([0, 1, 2, 3]), [0.0, 1.0, 1.5, 11 / 6], atol=1e-12)


class TestStructurePrior:
    """Topology and divergence-time density."""

    def test_matches_hand_computation(self, three_leaf_tree) -> None:
        c = 1.3
        # u2 at 0.2 from u1 at 0, m = 3 (l = 2, r = 1)
        term_u2 = (np.log(c / 0.8) + c * np.log(0.8) * harmonic_number(2)
                   + gammaln(2) + gammaln(1) - gammaln(3))
        # u3 at 0.6 from u2 at 0.2, m = 2 (l = r = 1)
        term_u3 = (np.log(c / 0.4) - c * (np.log(0.8) - np.log(0.4)) * harmonic_number(1)
                   + gammaln(1) + gammaln(1) - gammaln(2))
        assert log_structure_prior(three_leaf_tree, c) == pytest.approx(term_u2 + term_u3)

    def test_exposure_gives_c_dependence(self, three_leaf_tree) -> None:
        """log prior(c1) - log prior(c2) = (K-1) log(c1/c2) - (c1-c2) * exposure."""
        exposure = divergence_exposure(three_leaf_tree)
        diff = log_structure_prior(three_leaf_tree, 2.0) - log_structure_prior(three_leaf_tree, 0.5)
        assert diff == pytest.approx(2 * np.log(4.0) - 1.5 * exposure)

    def test_time_outside_domain_raises(self, three_leaf_tree) -> None:
        tree = three_leaf_tree.copy()
        tree.times[3] = 1.2
        with pytest.raises(NumericDomainError):
            log_structure_prior(tree, 1.0)

    def test_zero_length_edge_gives_negative_infinity(self, three_leaf_tree) -> None:
        tree = three_leaf_tree.copy()
        tree.times[4] = tree.times[3]
        assert log_structure_prior(tree, 1.0) == -np.inf


class TestLocationPrior:
    """Brownian increments along the edges."""

    def test_matches_edgewise_normal(self, three_leaf_tree) -> None:
        variances = np.array([0.5, 1.0, 2.0])
        expected = 0.0
        for child in three_leaf_tree.edges():
            parent = three_leaf_tree.parent[child]
            length = three_leaf_tree.times[child] - three_leaf_tree.times[parent]
            var = variances[ITEM_GROUP] * length
            diff = three_leaf_tree.locations[child] - three_leaf_tree.locations[parent]
            expected += np.sum(-0.5 * np.log(2 * np.pi * var) - diff ** 2 / (2 * var))
        assert log_location_prior(three_leaf_tree, variances, ITEM_GROUP) == pytest.approx(expected)

    def test_negative_variance_raises(self, three_leaf_tree) -> None:
        with pytest.raises(NumericDomainError):
            log_location_prior(three_leaf_tree, np.array([1.0, -0.1, 1.0]), ITEM_GROUP)

    def test_zero_variance_is_point_mass(self, three_leaf_tree) -> None:
        tree = three_leaf_tree.copy()
        tree.locations[:] = 0.0
        assert log_location_prior(tree, np.zeros(3), ITEM_GROUP) == 0.0
        assert log_location_prior(three_leaf_tree, np.zeros(3), ITEM_GROUP) == -np.inf

    def test_gaussian_logpdf_never_nan(self) -> None:
        out = gaussian_logpdf([0.0, 1.0, 1.0], [0.0, 0.0, 1.0], [0.0, 0.0, 1.0])
        assert out[0] == 0.0
        assert out[1] == -np.inf
        assert not np.any(np.isnan(out))


class TestJointPrior:

    def test_is_sum_of_parts(self, three_leaf_tree) -> None:
        variances = np.ones(3)
        joint = log_ddt_prior(three_leaf_tree, 1.0, variances, ITEM_GROUP)
        parts = (log_structure_prior(three_leaf_tree, 1.0)
                 + log_location_prior(three_leaf_tree, variances, ITEM_GROUP))
        assert joint == pytest.approx(parts)
        assert np.isfinite(joint)
