"""
Tests for Polya-Gamma sampling.

Run: pytest tests/test_polya_gamma.py -v
"""

import numpy as np
import pytest

from ddtlcm.models.polya_gamma import polya_gamma_mean, sample_polya_gamma


class TestPolyaGamma:
    """Moments and edge cases of the truncated series sampler."""

    @pytest.mark.parametrize("b,z", [(1.0, 0.0), (1.0, 2.5), (4.0, -1.0), (25.0, 0.3)])
    def test_sample_mean_matches_exact_mean(self, b, z) -> None:
        rng = np.random.default_rng(7)
        draws = sample_polya_gamma(np.full(4000, b), np.full(4000, z), rng)
        expected = polya_gamma_mean(b, z)
        # sd of PG(b, z) is at most sqrt(b / 24)
        tolerance = 5 * np.sqrt(b / 24) / np.sqrt(4000)
        assert draws.mean() == pytest.approx(float(expected), abs=tolerance)

    def test_mean_at_zero_tilt(self) -> None:
        assert float(polya_gamma_mean(2.0, 0.0)) == pytest.approx(0.5)

    def test_zero_shape_gives_zero(self) -> None:
        rng = np.random.default_rng(0)
        draws = sample_polya_gamma(np.zeros(5), np.linspace(-2, 2, 5), rng)
        np.testing.assert_allclose(draws, 0.0)

    def test_broadcast_shape(self) -> None:
        rng = np.random.default_rng(0)
        draws = sample_polya_gamma(np.ones((3, 4)), 0.5, rng, truncation=50)
        assert draws.shape == (3, 4)
        assert np.all(draws > 0)

    def test_negative_shape_rejected(self) -> None:
        with pytest.raises(ValueError):
            sample_polya_gamma(-1.0, 0.0, np.random.default_rng(0))

    def test_reproducible(self) -> None:
        a = sample_polya_gamma(np.ones(10), 1.0, np.random.default_rng(3))
        b = sample_polya_gamma(np.ones(10), 1.0, np.random.default_rng(3))
        np.testing.assert_array_equal(a, b)
