"""
Latent class likelihood for binary responses.

Each subject belongs to one of K latent classes; given its class, the J
binary responses are independent Bernoulli draws with class-specific
probabilities. This module provides the per-class log-likelihoods used by
the Gibbs sampler, the marginal (class-summed) likelihood used in the
Metropolis-Hastings ratio and for model comparison, and an EM fitter used
to initialize the chain.

Missing responses are handled through a 0/1 mask: a masked entry drops out
of every likelihood term, so a subject with no observed responses has a
flat likelihood and its class posterior equals the class prior.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np
from scipy.special import expit, log_expit, logit, logsumexp


logger = logging.getLogger(__name__)

# Item probabilities are kept inside [PROB_FLOOR, 1 - PROB_FLOOR] in EM
PROB_FLOOR = 0.01


# =============================================================================
# LIKELIHOOD
# =============================================================================

def class_log_likelihoods(filled: np.ndarray, mask: np.ndarray,
                          item_logits: np.ndarray) -> np.ndarray:
    """
    Log P(responses of subject i | class k) for all subjects and classes.

    Vectorized over subjects and classes with two matrix products:
        sum_j m_ij [ x_ij log p_kj + (1 - x_ij) log(1 - p_kj) ]

    Args:
        filled: (n_subjects, n_items) responses with missing entries set to 0
        mask: (n_subjects, n_items) 1.0 for observed responses, 0.0 otherwise
        item_logits: (n_classes, n_items) logit of P(x_ij = 1 | class k)

    Returns:
        (n_subjects, n_classes) matrix of log-likelihoods
    """
    log_p = log_expit(item_logits)          # log p_kj
    log_1mp = log_expit(-item_logits)       # log (1 - p_kj)
    positives = filled * mask
    negatives = (1.0 - filled) * mask
    return positives @ log_p.T + negatives @ log_1mp.T


def class_posteriors(filled: np.ndarray, mask: np.ndarray, class_probs: np.ndarray,
                     item_logits: np.ndarray,
                     return_log_likelihood: bool = False):
    """
    Posterior class membership probabilities P(class | responses).

    Uses the log-sum-exp trick over classes for numerical stability.

    Args:
        filled, mask: Response matrix and observation mask
        class_probs: (n_classes,) prior class probabilities
        item_logits: (n_classes, n_items) item logits per class
        return_log_likelihood: Also return the per-subject marginal log-likelihood

    Returns:
        (n_subjects, n_classes) responsibilities, plus a (n_subjects,)
        array of log P(x_i) when ``return_log_likelihood`` is True.
    """
    with np.errstate(divide="ignore"):
        log_class_probs = np.log(class_probs)
    log_joint = log_class_probs + class_log_likelihoods(filled, mask, item_logits)
    log_marginal = logsumexp(log_joint, axis=1)
    responsibilities = np.exp(log_joint - log_marginal[:, None])
    if return_log_likelihood:
        return responsibilities, log_marginal
    return responsibilities


def subject_log_likelihoods(filled: np.ndarray, mask: np.ndarray, class_probs: np.ndarray,
                            item_logits: np.ndarray) -> np.ndarray:
    """Marginal log-likelihood log sum_k pi_k P(x_i | k) of each subject."""
    with np.errstate(divide="ignore"):
        log_joint = np.log(class_probs) + class_log_likelihoods(filled, mask, item_logits)
    return logsumexp(log_joint, axis=1)


def lcm_log_likelihood(filled: np.ndarray, mask: np.ndarray, class_probs: np.ndarray,
                       item_logits: np.ndarray) -> float:
    """
    Observed-data log-likelihood of the latent class model.

    This is the marginal likelihood, summing over the class of every
    subject:  sum_i logsumexp_k [ log pi_k + log P(x_i | k) ].
    """
    return float(subject_log_likelihoods(filled, mask, class_probs, item_logits).sum())


# =============================================================================
# EM FITTING (chain initialization)
# =============================================================================

def initialize_lca_parameters(n_classes: int, n_items: int,
                              rng: np.random.Generator) -> Tuple[np.ndarray, np.ndarray]:
    """
    Random starting values for EM.

    Dirichlet(1, ..., 1) class probabilities and Beta(2, 2) item
    probabilities, which are centered at 0.5 with some spread.
    """
    class_probs = rng.dirichlet(np.ones(n_classes))
    item_probs = rng.beta(2, 2, size=(n_classes, n_items))
    return class_probs, item_probs


def lca_m_step(filled: np.ndarray, mask: np.ndarray,
               responsibilities: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    M-step: class probabilities and item probabilities from soft assignments.

    Item probabilities are weighted response rates over observed entries,
    clipped away from 0 and 1 so their logits stay finite.
    """
    n_obs = filled.shape[0]
    class_probs = responsibilities.sum(axis=0) / n_obs

    # Expected number of observed responses and positives per class and item
    observed = responsibilities.T @ mask
    positives = responsibilities.T @ (filled * mask)
    item_probs = positives / (observed + 1e-10)
    item_probs = np.clip(item_probs, PROB_FLOOR, 1 - PROB_FLOOR)
    return class_probs, item_probs


def fit_lca(filled: np.ndarray, mask: np.ndarray, n_classes: int,
            rng: np.random.Generator, max_iter: int = 100, tol: float = 1e-4,
            n_init: int = 10) -> Dict:
    """
    Fit a latent class model by EM, keeping the best of several random starts.

    Args:
        filled: (n_subjects, n_items) responses with missing entries set to 0
        mask: (n_subjects, n_items) observation mask
        n_classes: Number of latent classes
        rng: Random number generator for the starting values
        max_iter: Maximum EM iterations per start
        tol: Convergence tolerance on the log-likelihood improvement
        n_init: Number of random starts

    Returns:
        Dictionary with:
        - class_probs: (n_classes,) class probabilities
        - item_probs: (n_classes, n_items) item probabilities per class
        - responsibilities: (n_subjects, n_classes) posterior memberships
        - log_likelihood: Final log-likelihood
        - bic, aic: Information criteria
        - n_iter: EM iterations of the best start
        - n_classes: Number of classes
    """
    n_obs, n_items = filled.shape
    best_ll = -np.inf
    best_result: Optional[Dict] = None

    for init in range(n_init):
        class_probs, item_probs = initialize_lca_parameters(n_classes, n_items, rng)
        prev_ll = -np.inf
        n_iter = max_iter

        for iteration in range(max_iter):
            responsibilities, subject_ll = class_posteriors(
                filled, mask, class_probs, logit(item_probs), return_log_likelihood=True
            )
            ll = float(subject_ll.sum())
            class_probs, item_probs = lca_m_step(filled, mask, responsibilities)

            if abs(ll - prev_ll) < tol:
                n_iter = iteration + 1
                break
            prev_ll = ll

        logger.debug(f"EM start {init + 1}/{n_init}: log-likelihood {ll:.3f} after {n_iter} iterations")

        if ll > best_ll:
            best_ll = ll
            best_result = {
                'class_probs': class_probs.copy(),
                'item_probs': item_probs.copy(),
                'responsibilities': responsibilities.copy(),
                'log_likelihood': ll,
                'n_iter': n_iter,
            }

    # (K - 1) class probabilities + K * J item probabilities
    n_params = (n_classes - 1) + n_classes * n_items
    best_result['bic'] = -2 * best_result['log_likelihood'] + n_params * np.log(n_obs)
    best_result['aic'] = -2 * best_result['log_likelihood'] + 2 * n_params
    best_result['n_classes'] = n_classes
    return best_result


def response_probabilities(item_logits: np.ndarray) -> np.ndarray:
    """Item response probabilities from item logits."""
    return expit(item_logits)
