"""
Starting states for a DDT-LCM chain.

Two ways to start a chain are built in:

- ``lca``: fit a plain latent class model by EM, cluster the fitted class
  profiles and read the tree off the dendrogram. The chain starts near a
  good mode, which shortens burn-in considerably.
- ``random``: draw the tree, its locations and the class parameters from
  the prior.

A caller may also hand over a complete ``ChainState``, e.g. the last sample
of an earlier run; it is checked against the data and parameters first.
"""

import logging
from typing import Optional

import numpy as np
from scipy.special import logit

from .data import ResponseData
from .exceptions import InputValidationError
from .models.ddt import DivergenceFunction
from .models.gibbs import update_class_assignments
from .models.lca import fit_lca
from .models.proposal import Attachment, bridge_moments, regraft_subtree, sample_attachment
from .schemas import DDTLCMParams, InitMethodEnum
from .state import ChainState
from .tree import LEAF_TIME, NO_NODE, DiffusionTree
from .utils import compute_profile_linkage, tree_from_linkage


logger = logging.getLogger(__name__)

# Lower bound on initial class probabilities so no class starts with zero mass
MIN_CLASS_PROB = 1e-3


# =============================================================================
# TREE FROM THE DDT PRIOR
# =============================================================================

def sample_ddt_tree(n_leaves: int, variances: np.ndarray, item_group: np.ndarray,
                    c: float, rng: np.random.Generator) -> DiffusionTree:
    """
    Draw a tree with ``n_leaves`` leaves and its locations from the DDT prior.

    Particles are added one at a time. The first runs straight from the root
    to time 1; each later particle follows the paths of earlier ones and
    diverges according to the DDT path process. The divergence point's
    location is drawn from the Brownian bridge along the edge it splits,
    and the new leaf diffuses from there to time 1.

    Args:
        n_leaves: Number of leaves K
        variances: (G,) diffusion variance of each item group
        item_group: (J,) group index of each item
        c: Divergence constant
        rng: Random number generator
    """
    K = n_leaves
    J = len(item_group)
    n_nodes = 2 * K
    root = n_nodes - 1
    item_var = np.asarray(variances, dtype=float)[item_group]
    divergence = DivergenceFunction(c)

    parent = np.full(n_nodes, NO_NODE, dtype=np.int64)
    children = np.full((n_nodes, 2), NO_NODE, dtype=np.int64)
    times = np.zeros(n_nodes)
    times[:K] = LEAF_TIME
    locations = np.zeros((n_nodes, J))

    # First particle: root -> leaf 0
    children[root, 0] = 0
    parent[0] = root
    locations[0] = np.sqrt(item_var * LEAF_TIME) * rng.standard_normal(J)
    tree = DiffusionTree(parent, children, times, locations)

    for leaf in range(1, K):
        edge_node, time = sample_attachment(tree, LEAF_TIME, divergence, rng)
        mean, var = bridge_moments(tree, edge_node, time, variances, item_group)
        location = mean + np.sqrt(var) * rng.standard_normal(J)

        # Hang the new leaf below a fresh branching node, then splice that node in
        node = K + leaf - 1
        tree.parent[leaf] = node
        tree.children[node] = [leaf, NO_NODE]
        tree.locations[leaf] = location + np.sqrt(item_var * (LEAF_TIME - time)) * rng.standard_normal(J)
        tree = regraft_subtree(tree, leaf, Attachment(edge_node=edge_node, time=time, location=location))

    tree.validate()
    return tree


# =============================================================================
# INITIALIZATION METHODS
# =============================================================================

def lca_initial_state(data: ResponseData, params: DDTLCMParams,
                      rng: np.random.Generator) -> ChainState:
    """Start from an EM latent class fit and the dendrogram of its class profiles."""
    K = params.n_classes
    fit = fit_lca(
        data.filled, data.mask, K, rng,
        max_iter=params.em_max_iter, n_init=params.em_n_init,
    )
    logger.info(
        f"LCA initialization: log-likelihood {fit['log_likelihood']:.2f}, BIC {fit['bic']:.2f}"
    )

    item_logits = logit(fit['item_probs'])
    tree = tree_from_linkage(compute_profile_linkage(item_logits), item_logits)

    class_probs = np.maximum(fit['class_probs'], MIN_CLASS_PROB)
    class_probs = class_probs / class_probs.sum()

    return ChainState(
        tree=tree,
        diffusion_variances=np.full(data.n_groups, params.initial_variance),
        class_probs=class_probs,
        assignments=fit['responsibilities'].argmax(axis=1),
        c=params.c,
    )


def random_initial_state(data: ResponseData, params: DDTLCMParams,
                         rng: np.random.Generator) -> ChainState:
    """Start from a draw of the prior; assignments come from the implied class posteriors."""
    K = params.n_classes
    variances = np.full(data.n_groups, params.initial_variance)
    tree = sample_ddt_tree(K, variances, data.item_group, params.c, rng)
    class_probs = rng.dirichlet(np.full(K, params.class_prob_concentration))
    class_probs = np.maximum(class_probs, MIN_CLASS_PROB)
    class_probs = class_probs / class_probs.sum()
    assignments = update_class_assignments(data, class_probs, tree.leaf_locations, rng)

    return ChainState(
        tree=tree,
        diffusion_variances=variances,
        class_probs=class_probs,
        assignments=assignments,
        c=params.c,
    )


def check_initial_state(state: ChainState, data: ResponseData, params: DDTLCMParams) -> ChainState:
    """
    Check a caller-supplied state against the data and parameters.

    Returns a private copy so the caller's arrays are never modified.

    Raises:
        InputValidationError: If a shape does not match or a value is out of range.
    """
    K = params.n_classes
    tree = state.tree.copy()
    if tree.n_leaves != K:
        raise InputValidationError(
            f"Initial tree has {tree.n_leaves} leaves but n_classes is {K}"
        )
    if tree.n_items != data.n_items:
        raise InputValidationError(
            f"Initial tree has locations for {tree.n_items} items, data has {data.n_items}"
        )
    tree.validate()

    variances = np.array(state.diffusion_variances, dtype=float)
    if variances.shape != (data.n_groups,) or not np.all(variances > 0):
        raise InputValidationError(
            f"Initial diffusion variances must be {data.n_groups} positive values"
        )

    class_probs = np.array(state.class_probs, dtype=float)
    if (class_probs.shape != (K,) or np.any(class_probs < 0)
            or not np.isclose(class_probs.sum(), 1.0)):
        raise InputValidationError(f"Initial class probabilities must be {K} values summing to 1")

    assignments = np.array(state.assignments, dtype=np.int64)
    if assignments.shape != (data.n_subjects,) or assignments.min() < 0 or assignments.max() >= K:
        raise InputValidationError(
            f"Initial assignments must be {data.n_subjects} class indices in 0..{K - 1}"
        )

    if not np.isfinite(state.c) or state.c <= 0:
        raise InputValidationError(f"Initial divergence constant must be positive, got {state.c}")

    return ChainState(
        tree=tree,
        diffusion_variances=variances,
        class_probs=class_probs,
        assignments=assignments,
        c=float(state.c),
    )


def initialize_state(data: ResponseData, params: DDTLCMParams, rng: np.random.Generator,
                     initial_state: Optional[ChainState] = None) -> ChainState:
    """
    Build the state a chain starts from.

    Args:
        data: Validated response data
        params: Sampler parameters; ``init_method`` picks the method
        rng: Random number generator
        initial_state: Optional caller-supplied state, used instead of ``init_method``
    """
    if initial_state is not None:
        logger.info("Starting chain from a provided state")
        return check_initial_state(initial_state, data, params)

    if params.init_method == InitMethodEnum.LCA.value:
        return lca_initial_state(data, params, rng)
    if params.init_method == InitMethodEnum.RANDOM.value:
        logger.info("Starting chain from a draw of the prior")
        return random_initial_state(data, params, rng)
    raise InputValidationError(f"Unknown initialization method: {params.init_method}")
