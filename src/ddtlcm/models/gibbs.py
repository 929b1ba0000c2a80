"""
Polya-Gamma augmented Gibbs updates for the latent class parameters.

Conditional on the tree, one sweep updates, strictly in this order:

1. Polya-Gamma auxiliary variables for every observed (subject, item) pair
2. Leaf locations (class item logits), a conjugate Normal update
3. Branching-node locations, each from its Gaussian full conditional
4. Group diffusion variances, inverse-gamma
5. The divergence constant c, Gamma (unless fixed)
6. Class probabilities, Dirichlet
7. Class assignments, categorical

Steps 1 and 2 use the Polya-Gamma identity for the logistic likelihood: with
omega ~ PG(1, eta), a Bernoulli(expit(eta)) observation x contributes
exp(kappa * eta - omega * eta^2 / 2) with kappa = x - 1/2, a Gaussian kernel
in eta. Every subject in class k shares the same tilt eta_kj, so the
per-pair variables are drawn summed per class and item: PG(n_kj, eta_kj),
where n_kj counts the observed responses to item j in class k.
"""

import numpy as np

from ..data import ResponseData
from ..schemas import DDTLCMParams
from ..state import ChainState
from ..tree import DiffusionTree
from .ddt import divergence_exposure
from .lca import class_posteriors
from .polya_gamma import sample_polya_gamma


# =============================================================================
# LOCATIONS
# =============================================================================

def class_sufficient_statistics(data: ResponseData, assignments: np.ndarray, n_classes: int):
    """
    Per-class response counts.

    Returns:
        Tuple (n_obs, kappa) of (n_classes, n_items) arrays: the number of
        observed responses and sum of (x_ij - 1/2) over subjects in each class.
    """
    onehot = np.zeros((len(assignments), n_classes))
    onehot[np.arange(len(assignments)), assignments] = 1.0
    n_obs = onehot.T @ data.mask
    kappa = onehot.T @ ((data.filled - 0.5) * data.mask)
    return n_obs, kappa


def sample_auxiliary(tree: DiffusionTree, n_obs: np.ndarray, rng: np.random.Generator,
                     truncation: int = 200) -> np.ndarray:
    """Summed Polya-Gamma variables PG(n_kj, eta_kj) for every class and item."""
    return sample_polya_gamma(n_obs, tree.leaf_locations, rng, truncation=truncation)


def update_leaf_locations(tree: DiffusionTree, variances: np.ndarray, item_group: np.ndarray,
                          omega: np.ndarray, kappa: np.ndarray,
                          rng: np.random.Generator) -> None:
    """
    Draw leaf locations from their conjugate Normal posterior, in place.

    Prior: x_kj ~ N(x_parent,j, sigma2_g (t_k - t_parent)).
    Augmented likelihood: precision omega_kj, linear term kappa_kj.
    """
    K = tree.n_leaves
    parents = tree.parent[:K]
    lengths = tree.times[:K] - tree.times[parents]
    prior_var = lengths[:, None] * variances[item_group][None, :]
    prior_mean = tree.locations[parents]

    precision = 1.0 / prior_var + omega
    mean = (prior_mean / prior_var + kappa) / precision
    tree.locations[:K] = mean + rng.standard_normal(mean.shape) / np.sqrt(precision)


def update_internal_locations(tree: DiffusionTree, variances: np.ndarray,
                              item_group: np.ndarray, rng: np.random.Generator) -> None:
    """
    Draw each branching node's location given its parent and two children, in place.

    The full conditional combines three Gaussian factors; with edge weights
    w = 1 / edge length it is
        N( sum_e w_e x_e / sum_e w_e,  sigma2_g / sum_e w_e ).
    Nodes are visited parents first.
    """
    item_var = variances[item_group]
    for node in tree.preorder():
        if node == tree.root or tree.is_leaf(node):
            continue
        parent = tree.parent[node]
        kids = tree.node_children(node)
        w_parent = 1.0 / (tree.times[node] - tree.times[parent])
        w_kids = 1.0 / (tree.times[kids] - tree.times[node])
        total = w_parent + w_kids.sum()
        mean = (w_parent * tree.locations[parent] + w_kids @ tree.locations[kids]) / total
        tree.locations[node] = mean + np.sqrt(item_var / total) * rng.standard_normal(tree.n_items)


# =============================================================================
# HYPERPARAMETERS
# =============================================================================

def update_diffusion_variances(tree: DiffusionTree, item_group: np.ndarray, n_groups: int,
                               prior_shape: float, prior_rate: float,
                               rng: np.random.Generator) -> np.ndarray:
    """
    Inverse-gamma draw of each group's diffusion variance.

    Uses the squared, length-normalized location increments over all edges
    and the items of each group:
        sigma2_g ~ InvGamma(a + E J_g / 2, b + SS_g / 2).
    """
    child = tree.edges()
    parent = tree.parent[child]
    lengths = tree.times[child] - tree.times[parent]
    normalized = (tree.locations[child] - tree.locations[parent]) ** 2 / lengths[:, None]

    per_item = normalized.sum(axis=0)
    sum_squares = np.bincount(item_group, weights=per_item, minlength=n_groups)
    n_terms = len(child) * np.bincount(item_group, minlength=n_groups)

    shape = prior_shape + n_terms / 2.0
    rate = prior_rate + sum_squares / 2.0
    return 1.0 / rng.gamma(shape, 1.0 / rate)


def update_divergence_constant(tree: DiffusionTree, prior_shape: float, prior_rate: float,
                               rng: np.random.Generator) -> float:
    """Gamma draw of c: c ~ Gamma(a + K - 1, b + divergence exposure of the tree)."""
    shape = prior_shape + (tree.n_leaves - 1)
    rate = prior_rate + divergence_exposure(tree)
    return float(rng.gamma(shape, 1.0 / rate))


# =============================================================================
# CLASS MEMBERSHIP
# =============================================================================

def update_class_probabilities(assignments: np.ndarray, n_classes: int, concentration: float,
                               rng: np.random.Generator) -> np.ndarray:
    """Dirichlet draw given class counts and a symmetric prior concentration."""
    counts = np.bincount(assignments, minlength=n_classes)
    return rng.dirichlet(concentration + counts)


def update_class_assignments(data: ResponseData, class_probs: np.ndarray,
                             item_logits: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """
    Categorical draw of every subject's class.

    P(z_i = k) is proportional to pi_k times the Bernoulli likelihood of the
    subject's observed responses; with no observed responses it is pi_k.
    """
    responsibilities = class_posteriors(data.filled, data.mask, class_probs, item_logits)
    cumulative = np.cumsum(responsibilities, axis=1)
    u = rng.random(data.n_subjects)[:, None] * cumulative[:, -1:]
    assignments = (cumulative <= u).sum(axis=1)
    return np.minimum(assignments, len(class_probs) - 1)


# =============================================================================
# SWEEP
# =============================================================================

def gibbs_sweep(tree: DiffusionTree, state: ChainState, data: ResponseData,
                params: DDTLCMParams, rng: np.random.Generator) -> ChainState:
    """
    One full Gibbs sweep conditional on ``tree``.

    Works on a private copy of the tree and returns a new ChainState; neither
    ``tree`` nor ``state`` is modified.
    """
    K = params.n_classes
    tree = tree.copy()
    variances = state.diffusion_variances

    n_obs, kappa = class_sufficient_statistics(data, state.assignments, K)
    omega = sample_auxiliary(tree, n_obs, rng, truncation=params.pg_truncation)
    update_leaf_locations(tree, variances, data.item_group, omega, kappa, rng)
    update_internal_locations(tree, variances, data.item_group, rng)

    variances = update_diffusion_variances(
        tree, data.item_group, data.n_groups,
        params.variance_prior_shape, params.variance_prior_rate, rng,
    )
    if params.fix_c:
        c = state.c
    else:
        c = update_divergence_constant(tree, params.c_prior_shape, params.c_prior_rate, rng)

    class_probs = update_class_probabilities(
        state.assignments, K, params.class_prob_concentration, rng
    )
    assignments = update_class_assignments(data, class_probs, tree.leaf_locations, rng)

    return ChainState(
        tree=tree,
        diffusion_variances=variances,
        class_probs=class_probs,
        assignments=assignments,
        c=c,
    )
