"""
Utility functions for building trees from clusterings.

This module provides helper functions for:
- Hierarchical clustering of class response profiles
- Converting a SciPy linkage matrix into a diffusion tree

These utilities are used to seed a chain with a tree whose topology already
reflects which latent classes answer alike.
"""

import numpy as np
from scipy.cluster.hierarchy import linkage
from scipy.spatial.distance import pdist

from .exceptions import InputValidationError
from .tree import LEAF_TIME, NO_NODE, DiffusionTree


# =============================================================================
# CLUSTERING UTILITIES
# =============================================================================

def compute_profile_linkage(profiles: np.ndarray, method: str = 'average') -> np.ndarray:
    """
    Compute hierarchical clustering of class profiles.

    Args:
        profiles: (n_classes, n_items) matrix, e.g. item logits per class.
        method: Linkage method for scipy.cluster.hierarchy.linkage.
                'average' (UPGMA) keeps merge heights monotone, which the
                conversion to divergence times relies on.

    Returns:
        (n_classes - 1, 4) scipy linkage matrix over Euclidean distances
    """
    profiles = np.asarray(profiles, dtype=float)
    if profiles.ndim != 2 or profiles.shape[0] < 2:
        raise InputValidationError("Need a 2D matrix with at least two profiles to cluster")

    # scipy.cluster.hierarchy.linkage takes the condensed distance form
    condensed = pdist(profiles, metric='euclidean')
    return linkage(condensed, method=method)


def tree_from_linkage(linkage_matrix: np.ndarray, leaf_locations: np.ndarray,
                      margin: float = 0.1, min_gap: float = 1e-3) -> DiffusionTree:
    """
    Turn a linkage matrix over K profiles into a diffusion tree.

    SciPy numbers the cluster formed by row i as K + i, which is also the id
    of the matching branching node in the tree arena; the last merge becomes
    the child of the root anchor. A merge at height h diverges at time
    1 - h / (h_max (1 + margin)), so taller merges happen earlier and every
    time stays inside (0, 1). Times are then pushed down the tree so each
    edge is at least ``min_gap`` long.

    Branching-node locations are the mean location of the leaves below them.

    Args:
        linkage_matrix: (K - 1, 4) SciPy linkage matrix
        leaf_locations: (K, J) locations of the leaves
        margin: Fraction of the largest height left between the root and the first divergence
        min_gap: Minimum edge length
    """
    linkage_matrix = np.asarray(linkage_matrix, dtype=float)
    leaf_locations = np.asarray(leaf_locations, dtype=float)
    K = leaf_locations.shape[0]
    if linkage_matrix.shape != (K - 1, 4):
        raise InputValidationError(
            f"Linkage matrix of shape {linkage_matrix.shape} does not match {K} leaves"
        )

    n_nodes = 2 * K
    root = n_nodes - 1
    parent = np.full(n_nodes, NO_NODE, dtype=np.int64)
    children = np.full((n_nodes, 2), NO_NODE, dtype=np.int64)
    times = np.zeros(n_nodes)
    times[:K] = LEAF_TIME

    heights = linkage_matrix[:, 2]
    h_max = heights.max()
    if h_max <= 0:
        h_max = 1.0

    for i, (left, right, height, _) in enumerate(linkage_matrix):
        node = K + i
        children[node] = [int(left), int(right)]
        parent[int(left)] = node
        parent[int(right)] = node
        times[node] = 1.0 - height / (h_max * (1.0 + margin))

    children[root, 0] = n_nodes - 2
    parent[n_nodes - 2] = root

    locations = np.zeros((n_nodes, leaf_locations.shape[1]))
    locations[:K] = leaf_locations
    tree = DiffusionTree(parent, children, times, locations)

    sets = tree.leaf_sets()
    for node in tree.preorder():
        if node == root or tree.is_leaf(node):
            continue
        t_parent = tree.times[tree.parent[node]]
        t_node = max(tree.times[node], t_parent + min_gap)
        if t_node >= LEAF_TIME:
            t_node = (t_parent + LEAF_TIME) / 2.0
        tree.times[node] = t_node
        tree.locations[node] = leaf_locations[sets[node]].mean(axis=0)

    tree.validate()
    return tree
