"""
Tests for the latent class likelihood and the EM fitter.

Run: pytest tests/test_lca.py -v
"""

import numpy as np
import pytest
from scipy.special import expit

from ddtlcm.models.lca import (
    class_log_likelihoods,
    class_posteriors,
    fit_lca,
    lcm_log_likelihood,
    subject_log_likelihoods,
)

from .conftest import TRUE_CLASS_PROBS, TRUE_LOGITS


class TestLikelihood:
    """Vectorized Bernoulli likelihoods with missing data."""

    def test_class_log_likelihoods_match_loop(self) -> None:
        rng = np.random.default_rng(1)
        filled = (rng.random((5, 4)) < 0.5).astype(float)
        mask = np.ones_like(filled)
        logits = rng.normal(size=(2, 4))
        result = class_log_likelihoods(filled, mask, logits)

        probs = expit(logits)
        for i in range(5):
            for k in range(2):
                expected = np.sum(filled[i] * np.log(probs[k]) + (1 - filled[i]) * np.log(1 - probs[k]))
                assert result[i, k] == pytest.approx(expected)

    def test_masked_entries_drop_out(self) -> None:
        filled = np.array([[1.0, 0.0, 1.0]])
        logits = np.array([[0.3, -1.0, 2.0]])
        full = class_log_likelihoods(filled[:, :2], np.ones((1, 2)), logits[:, :2])
        masked = class_log_likelihoods(filled, np.array([[1.0, 1.0, 0.0]]), logits)
        assert masked[0, 0] == pytest.approx(full[0, 0])

    def test_all_missing_subject_gets_prior(self) -> None:
        filled = np.zeros((1, 3))
        mask = np.zeros((1, 3))
        class_probs = np.array([0.2, 0.8])
        resp = class_posteriors(filled, mask, class_probs, np.ones((2, 3)))
        np.testing.assert_allclose(resp[0], class_probs)

    def test_marginal_is_sum_of_subjects(self, simulated) -> None:
        filled = simulated["responses"]
        mask = np.ones_like(filled)
        total = lcm_log_likelihood(filled, mask, TRUE_CLASS_PROBS, TRUE_LOGITS)
        per_subject = subject_log_likelihoods(filled, mask, TRUE_CLASS_PROBS, TRUE_LOGITS)
        assert total == pytest.approx(per_subject.sum())
        assert np.all(per_subject < 0)

    def test_posteriors_sum_to_one(self, simulated) -> None:
        filled = simulated["responses"]
        resp = class_posteriors(filled, np.ones_like(filled), TRUE_CLASS_PROBS, TRUE_LOGITS)
        np.testing.assert_allclose(resp.sum(axis=1), 1.0)


class TestFitLCA:
    """EM recovers well-separated classes."""

    def test_recovers_classes(self, simulated) -> None:
        filled = simulated["responses"]
        result = fit_lca(filled, np.ones_like(filled), 3, np.random.default_rng(5), n_init=5)
        assert result["item_probs"].shape == (3, 9)
        assert result["class_probs"].sum() == pytest.approx(1.0)

        # every true class profile is close to some fitted profile
        fitted = result["item_probs"]
        for true_profile in expit(TRUE_LOGITS):
            distance = np.abs(fitted - true_profile).max(axis=1).min()
            assert distance < 0.15

    def test_information_criteria(self, simulated) -> None:
        filled = simulated["responses"]
        result = fit_lca(filled, np.ones_like(filled), 2, np.random.default_rng(5), n_init=2)
        n_params = 1 + 2 * 9
        assert result["aic"] == pytest.approx(-2 * result["log_likelihood"] + 2 * n_params)
        assert result["bic"] > result["aic"]
