"""
Posterior summaries of a fitted chain.

Latent class labels are only identified up to permutation, so samples are
first aligned to a common labeling (see ``relabel_samples``) and only then
aggregated. Every function here is deterministic: summarizing the same
chain twice gives identical results, and the chain itself is never
modified.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy.optimize import linear_sum_assignment
from scipy.special import logsumexp

from .data import ResponseData
from .exceptions import InputValidationError
from .models.lca import subject_log_likelihoods
from .sampler import ChainResult
from .tree import DiffusionTree


logger = logging.getLogger(__name__)


@dataclass
class PosteriorSummary:
    """
    Relabeled posterior summaries of one chain after burn-in.

    Attributes:
        response_probs_summary: One row per (class, item), K * J rows
        class_probs_summary: One row per class
        diffusion_variance_summary: One row per major item group
        divergence_summary: One row for the divergence constant c
        tree_map: Maximum a posteriori tree, leaves relabeled to the summary's classes
        tree_covariance: (K, K) shared path lengths between leaves of ``tree_map``
        max_log_posterior: Log-posterior of the MAP sample
        map_index: Iteration of the MAP sample
        sample_indices: Iterations of the retained samples
        permutations: (S, K) relabeling of each retained sample;
            ``permutations[s, k]`` is the summary label of the sample's class k
        data: Response data the chain was fit on
        setting: Dimensions, burn-in, thinning and sampler parameters
    """
    response_probs_summary: pd.DataFrame
    class_probs_summary: pd.DataFrame
    diffusion_variance_summary: pd.DataFrame
    divergence_summary: pd.DataFrame
    tree_map: DiffusionTree
    tree_covariance: np.ndarray
    max_log_posterior: float
    map_index: int
    sample_indices: np.ndarray
    permutations: np.ndarray
    data: ResponseData
    setting: Dict[str, Any]

    @property
    def n_retained(self) -> int:
        return len(self.sample_indices)

    @property
    def response_probs(self) -> np.ndarray:
        """(K, J) posterior mean response probabilities."""
        K = self.setting["K"]
        return self.response_probs_summary["mean"].to_numpy().reshape(K, -1)

    @property
    def class_probs(self) -> np.ndarray:
        """(K,) posterior mean class probabilities, renormalized to sum to 1."""
        means = self.class_probs_summary["mean"].to_numpy()
        return means / means.sum()


# =============================================================================
# RELABELING
# =============================================================================

def apply_permutations(values: np.ndarray, permutations: np.ndarray) -> np.ndarray:
    """
    Reorder the class axis (axis 1) of per-sample arrays.

    Entry ``[s, k]`` of the input ends up at ``[s, permutations[s, k]]``.
    """
    values = np.asarray(values)
    out = np.empty_like(values)
    rows = np.arange(len(values))[:, None]
    out[rows, permutations] = values
    return out


def relabel_samples(profiles: np.ndarray, reference_index: int = 0,
                    max_iter: int = 50) -> np.ndarray:
    """
    Align class labels across samples.

    Starting from the labeling of sample ``reference_index``, every sample
    is matched to the reference by solving the K x K assignment problem on
    squared Euclidean distance between class profiles. The reference is
    then replaced by the mean of the aligned profiles and the matching is
    repeated until no permutation changes.

    Args:
        profiles: (S, K, J) class profiles, e.g. response probabilities
        reference_index: Sample whose labels define the initial reference
        max_iter: Maximum number of matching rounds

    Returns:
        (S, K) integer array; ``perm[s, k]`` is the aligned label of class k of sample s.
    """
    profiles = np.asarray(profiles, dtype=float)
    S, K = profiles.shape[:2]
    reference = profiles[reference_index]
    permutations = None

    for round_ in range(max_iter):
        new_permutations = np.empty((S, K), dtype=np.int64)
        for s in range(S):
            cost = ((profiles[s][:, None, :] - reference[None, :, :]) ** 2).sum(axis=-1)
            rows, cols = linear_sum_assignment(cost)
            new_permutations[s, rows] = cols

        if permutations is not None and np.array_equal(new_permutations, permutations):
            logger.debug(f"Relabeling converged after {round_ + 1} round(s)")
            break
        permutations = new_permutations
        reference = apply_permutations(profiles, permutations).mean(axis=0)

    return permutations


# =============================================================================
# AGGREGATION HELPERS
# =============================================================================

def _interval_stats(values: np.ndarray, credible_level: float) -> Dict[str, np.ndarray]:
    """Posterior mean, median, sd and equal-tailed interval along axis 0."""
    alpha = (1.0 - credible_level) / 2.0
    return {
        'mean': values.mean(axis=0),
        'median': np.median(values, axis=0),
        'sd': values.std(axis=0, ddof=1) if len(values) > 1 else np.zeros(values.shape[1:]),
        'lower': np.quantile(values, alpha, axis=0),
        'upper': np.quantile(values, 1.0 - alpha, axis=0),
    }


def _retained_indices(chain: ChainResult, burnin: int, thin: int) -> np.ndarray:
    if thin < 1:
        raise InputValidationError(f"thin must be at least 1, got {thin}")
    if burnin < 0 or burnin >= chain.completed_iters:
        raise InputValidationError(
            f"burnin must be in 0..{chain.completed_iters - 1} for a chain with "
            f"{chain.completed_iters} completed iteration(s), got {burnin}"
        )
    return np.arange(burnin, chain.completed_iters, thin)


# =============================================================================
# SUMMARY
# =============================================================================

def summarize(chain: ChainResult, burnin: int, relabel: bool = True, thin: int = 1,
              credible_level: float = 0.95) -> PosteriorSummary:
    """
    Summarize a chain after discarding ``burnin`` iterations.

    Args:
        chain: Fitted chain from ``run_chain``
        burnin: Number of leading iterations to discard, 0 <= burnin < completed iterations
        relabel: Align class labels across samples before aggregating
        thin: Keep every ``thin``-th retained sample
        credible_level: Mass of the equal-tailed credible intervals

    Returns:
        PosteriorSummary

    Raises:
        InputValidationError: If ``burnin`` or ``thin`` is out of range.
    """
    if not 0 < credible_level < 1:
        raise InputValidationError(f"credible_level must be in (0, 1), got {credible_level}")
    indices = _retained_indices(chain, burnin, thin)
    samples = [chain.samples[i] for i in indices]
    data = chain.data
    K, J = chain.params.n_classes, data.n_items

    log_posteriors = np.array([s.log_posterior for s in samples])
    map_pos = int(np.argmax(log_posteriors))

    response_probs = np.stack([s.response_probs for s in samples])
    class_probs = np.stack([s.class_probs for s in samples])
    if relabel:
        permutations = relabel_samples(response_probs, reference_index=map_pos)
    else:
        permutations = np.tile(np.arange(K), (len(samples), 1))
    response_probs = apply_permutations(response_probs, permutations)
    class_probs = apply_permutations(class_probs, permutations)

    # Response probabilities: K * J rows, class-major
    stats = _interval_stats(response_probs, credible_level)
    response_frame = pd.DataFrame({
        'class': np.repeat(np.arange(1, K + 1), J),
        'item': np.tile(data.item_names, K),
        'item_index': np.tile(np.arange(J), K),
        'item_group': np.tile(np.array(data.group_names)[data.item_group], K),
        **{name: values.ravel() for name, values in stats.items()},
    })

    # Class probabilities, with the mean share of subjects assigned to each class
    shares = np.stack([
        np.bincount(perm[s.assignments], minlength=K) / data.n_subjects
        for s, perm in zip(samples, permutations)
    ])
    class_frame = pd.DataFrame({
        'class': np.arange(1, K + 1),
        **_interval_stats(class_probs, credible_level),
        'assigned_share': shares.mean(axis=0),
    })

    variances = np.stack([s.diffusion_variances for s in samples])
    variance_frame = pd.DataFrame({
        'item_group': data.group_names,
        'n_items': np.bincount(data.item_group, minlength=data.n_groups),
        **_interval_stats(variances, credible_level),
    })

    c_values = np.array([s.c for s in samples])[:, None]
    divergence_frame = pd.DataFrame({
        'parameter': ['c'],
        **_interval_stats(c_values, credible_level),
    })

    tree_map = samples[map_pos].tree.relabel_leaves(permutations[map_pos]).freeze()

    setting = {
        'K': K,
        'J': J,
        'N': data.n_subjects,
        'G': data.n_groups,
        'burnin': burnin,
        'thin': thin,
        'total_iters': chain.params.total_iters,
        'completed_iters': chain.completed_iters,
        'item_membership': {name: list(items) for name, items in data.item_membership.items()},
        'relabel': relabel,
        'credible_level': credible_level,
        'acceptance_rate': chain.acceptance_rate,
        'params': chain.params.model_dump(),
    }

    return PosteriorSummary(
        response_probs_summary=response_frame,
        class_probs_summary=class_frame,
        diffusion_variance_summary=variance_frame,
        divergence_summary=divergence_frame,
        tree_map=tree_map,
        tree_covariance=tree_map.leaf_covariance(),
        max_log_posterior=float(log_posteriors[map_pos]),
        map_index=int(indices[map_pos]),
        sample_indices=indices,
        permutations=permutations,
        data=data,
        setting=setting,
    )


# =============================================================================
# MODEL COMPARISON
# =============================================================================

def compute_information_criteria(chain: ChainResult, burnin: int, thin: int = 1) -> Dict:
    """
    WAIC and DIC from the retained samples.

    Both use the per-subject marginal log-likelihood (class assignments
    summed out), so neither depends on class labels and no relabeling is
    needed. DIC uses the variance-based effective number of parameters,
    p_DIC = var(deviance) / 2.

    Returns:
        Dictionary with:
        - waic, p_waic, lppd: WAIC on the deviance scale and its components
        - dic, p_dic, mean_deviance: DIC and its components
        - n_samples: Number of samples used
    """
    indices = _retained_indices(chain, burnin, thin)
    data = chain.data
    log_lik = np.stack([
        subject_log_likelihoods(data.filled, data.mask, sample.class_probs,
                                sample.tree.leaf_locations)
        for sample in (chain.samples[i] for i in indices)
    ])
    S = log_lik.shape[0]

    lppd = float(np.sum(logsumexp(log_lik, axis=0) - np.log(S)))
    p_waic = float(np.sum(log_lik.var(axis=0, ddof=1))) if S > 1 else 0.0

    deviance = -2.0 * log_lik.sum(axis=1)
    mean_deviance = float(deviance.mean())
    p_dic = float(deviance.var(ddof=1) / 2.0) if S > 1 else 0.0

    return {
        'waic': -2.0 * (lppd - p_waic),
        'p_waic': p_waic,
        'lppd': lppd,
        'dic': mean_deviance + p_dic,
        'p_dic': p_dic,
        'mean_deviance': mean_deviance,
        'n_samples': S,
    }


def response_probs_matrix(summary: PosteriorSummary, statistic: str = 'mean',
                          item_names: Optional[List[str]] = None) -> pd.DataFrame:
    """K x J table of one statistic of the response probabilities, classes as rows."""
    frame = summary.response_probs_summary.pivot(index='class', columns='item_index', values=statistic)
    frame.columns = item_names or summary.data.item_names
    return frame


def posterior_mean_logits(summary: PosteriorSummary) -> np.ndarray:
    """Posterior mean response probabilities as item logits, clipped away from 0 and 1."""
    probs = np.clip(summary.response_probs, 1e-10, 1 - 1e-10)
    return np.log(probs) - np.log1p(-probs)

