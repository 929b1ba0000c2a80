"""
End-to-end scenarios: fit, summarize and predict.

The full-size scenario (496 subjects, 78 items in 7 groups, 6 classes) is
marked slow.

Run: pytest tests/test_end_to_end.py -v -m "slow or not slow"
"""

import numpy as np
import pytest

from ddtlcm import (
    DDTLCMParams,
    compute_information_criteria,
    predict_point,
    predict_posterior,
    run_chain,
    summarize,
)
from ddtlcm.initialize import sample_ddt_tree

from .conftest import simulate_responses


def make_group_membership(group_sizes):
    membership = {}
    start = 0
    for g, size in enumerate(group_sizes):
        membership[f"group_{g + 1}"] = list(range(start, start + size))
        start += size
    return membership


class TestSmallScenario:

    def test_fit_summarize_predict(self, simulated) -> None:
        params = DDTLCMParams(n_classes=3, total_iters=20, em_n_init=2)
        chain = run_chain(simulated["responses"], simulated["membership"], params, seed=2024)
        summary = summarize(chain, burnin=10)
        assert len(summary.response_probs_summary) == 27
        assert summary.n_retained == 10

        prediction = predict_point(summary, simulated["responses"][:20])
        assert prediction.class_probabilities.shape == (20, 3)
        ic = compute_information_criteria(chain, burnin=10)
        assert np.isfinite(ic["waic"])


@pytest.mark.slow
class TestFullScenario:
    """496 subjects, 78 items in 7 major groups, 6 classes, 100 iterations."""

    @pytest.fixture(scope="class")
    def scenario(self):
        rng = np.random.default_rng(496)
        group_sizes = [10, 12, 8, 14, 11, 13, 10]
        membership = make_group_membership(group_sizes)
        item_group = np.repeat(np.arange(7), group_sizes)

        tree = sample_ddt_tree(6, np.full(7, 4.0), item_group, 1.0, rng)
        class_probs = rng.dirichlet(np.full(6, 5.0))
        responses, classes = simulate_responses(tree.leaf_locations, class_probs, 496, rng)

        params = DDTLCMParams(n_classes=6, total_iters=100)
        chain = run_chain(responses, membership, params, seed=1)
        return {"chain": chain, "responses": responses, "classes": classes}

    def test_dimensions(self, scenario) -> None:
        chain = scenario["chain"]
        assert chain.completed_iters == 100
        summary = summarize(chain, burnin=50)
        assert summary.n_retained == 50
        assert len(summary.response_probs_summary) == 6 * 78
        assert len(summary.diffusion_variance_summary) == 7

    def test_invariants(self, scenario) -> None:
        for sample in scenario["chain"].samples:
            assert sample.tree.is_valid()
            assert sample.class_probs.sum() == pytest.approx(1.0)

    def test_last_sample_only(self, scenario) -> None:
        summary = summarize(scenario["chain"], burnin=99)
        assert summary.n_retained == 1

    def test_predictions(self, scenario) -> None:
        chain = scenario["chain"]
        summary = summarize(chain, burnin=50)
        point = predict_point(summary, scenario["responses"])
        posterior = predict_posterior(chain, summary, scenario["responses"])
        assert set(point.class_assignments) <= set(range(1, 7))
        assert set(posterior.class_assignments) <= set(range(1, 7))
