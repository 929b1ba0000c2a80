"""
Class predictions for new subjects.

Two entry points:

- ``predict_point``: plug in the posterior mean (relabeled) response and
  class probabilities. Fast; ignores posterior uncertainty.
- ``predict_posterior``: average the class posterior of every retained,
  relabeled sample. Slower; propagates posterior uncertainty.

Both return 1-based class labels matching the rows of the summary tables.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .data import validate_new_data
from .exceptions import InputValidationError
from .models.lca import class_posteriors
from .sampler import ChainResult
from .summary import PosteriorSummary, posterior_mean_logits


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassPrediction:
    """Predicted classes of new subjects."""
    class_assignments: np.ndarray
    class_probabilities: np.ndarray
    method: str

    @property
    def n_subjects(self) -> int:
        return len(self.class_assignments)


def _allow_missing(summary: PosteriorSummary, allow_missing: Optional[bool]) -> bool:
    if allow_missing is not None:
        return allow_missing
    return bool(summary.setting["params"].get("allow_missing", False))


def predict_point(summary: PosteriorSummary, new_data,
                  allow_missing: Optional[bool] = None) -> ClassPrediction:
    """
    Predict classes using posterior mean parameters.

    Args:
        summary: Summary of a fitted chain
        new_data: (N', J) binary responses on the items the chain was fit on
        allow_missing: Accept NaN responses; defaults to the fitted chain's setting

    Returns:
        ClassPrediction with labels in 1..K and an (N', K) probability matrix
    """
    data = validate_new_data(new_data, summary.data, allow_missing=_allow_missing(summary, allow_missing))
    probabilities = class_posteriors(
        data.filled, data.mask, summary.class_probs, posterior_mean_logits(summary)
    )
    return ClassPrediction(
        class_assignments=probabilities.argmax(axis=1) + 1,
        class_probabilities=probabilities,
        method="point",
    )


def predict_posterior(chain: ChainResult, summary: PosteriorSummary, new_data,
                      allow_missing: Optional[bool] = None) -> ClassPrediction:
    """
    Predict classes by averaging over retained posterior samples.

    Each sample's class posterior is computed with its own parameters and
    mapped to the summary's labels with the sample's relabeling permutation
    before averaging.

    Args:
        chain: The chain ``summary`` was computed from
        summary: Summary holding the retained iterations and their permutations
        new_data: (N', J) binary responses on the items the chain was fit on
        allow_missing: Accept NaN responses; defaults to the fitted chain's setting

    Returns:
        ClassPrediction with labels in 1..K and an (N', K) probability matrix
    """
    indices = summary.sample_indices
    if (chain.params.n_classes != summary.setting["K"]
            or len(indices) == 0 or indices.max() >= chain.completed_iters):
        raise InputValidationError("Summary was not computed from this chain")

    data = validate_new_data(new_data, summary.data, allow_missing=_allow_missing(summary, allow_missing))
    K = summary.setting["K"]
    probabilities = np.zeros((data.n_subjects, K))
    for index, perm in zip(indices, summary.permutations):
        sample = chain.samples[index]
        responsibilities = class_posteriors(
            data.filled, data.mask, sample.class_probs, sample.tree.leaf_locations
        )
        probabilities[:, perm] += responsibilities
    probabilities /= len(indices)

    logger.debug(f"Averaged class posteriors over {len(indices)} samples")
    return ClassPrediction(
        class_assignments=probabilities.argmax(axis=1) + 1,
        class_probabilities=probabilities,
        method="posterior",
    )
