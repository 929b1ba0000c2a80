"""
Dirichlet Diffusion Tree prior.

Under the DDT, particles diffuse from the root at time 0. A particle that
follows a path segment already taken by m earlier particles diverges from it
at time t with hazard a(t)/m; at an existing branching point it follows a
branch with probability proportional to the number of particles that went
that way. Locations follow Brownian motion whose variance accrues with time.

With divergence function a(t) = c / (1 - t) the cumulative hazard is
A(t) = -c log(1 - t), and the log-density of a tree with K leaves is

    sum over branching nodes v with parent u, l and r leaves under its two
    children and m = l + r:
        log a(t_v) - (A(t_v) - A(t_u)) H_{m-1} + lgamma(l) + lgamma(r) - lgamma(m)

plus, for every edge (u -> v) and item j in major group g,
        log N(x_vj - x_uj; 0, sigma2_g (t_v - t_u)).

H_n is the n-th harmonic number. Normalizing constants that do not depend
on the tree, its times or its locations are dropped.
"""

import numpy as np
from scipy.special import digamma, gammaln

from ..exceptions import NumericDomainError
from ..tree import DiffusionTree


class DivergenceFunction:
    """
    Divergence function a(t) = c / (1 - t) and its cumulative hazard.

    Args:
        c: Divergence constant; larger values push divergences earlier.
    """

    def __init__(self, c: float):
        if not np.isfinite(c) or c <= 0:
            raise NumericDomainError(f"Divergence constant c must be positive, got {c}")
        self.c = float(c)

    def rate(self, t):
        """a(t)."""
        return self.c / (1.0 - np.asarray(t, dtype=float))

    def cumulative(self, t):
        """A(t) = -c log(1 - t); infinite at t = 1."""
        with np.errstate(divide="ignore"):
            return -self.c * np.log1p(-np.asarray(t, dtype=float))

    def inverse_cumulative(self, value):
        """Time t with A(t) = value."""
        return -np.expm1(-np.asarray(value, dtype=float) / self.c)

    def __repr__(self) -> str:
        return f"DivergenceFunction(c={self.c:.4g})"


def harmonic_number(n):
    """H_n = 1 + 1/2 + ... + 1/n, with H_0 = 0. Works elementwise on arrays."""
    return digamma(np.asarray(n, dtype=float) + 1.0) + np.euler_gamma


# =============================================================================
# DOMAIN CHECKS
# =============================================================================

def check_divergence_times(tree: DiffusionTree) -> None:
    """Raise if a branching time is outside [0, 1) or a leaf time outside (0, 1]."""
    internal = tree.times[tree.n_leaves:]
    if not np.all(np.isfinite(internal) & (internal >= 0) & (internal < 1)):
        raise NumericDomainError(
            "Divergence times must lie in [0, 1)",
            {"times": internal.tolist()},
        )
    leaf_times = tree.times[:tree.n_leaves]
    if not np.all((leaf_times > 0) & (leaf_times <= 1)):
        raise NumericDomainError(
            "Leaf times must lie in (0, 1]", {"times": leaf_times.tolist()}
        )


def check_variances(variances: np.ndarray) -> np.ndarray:
    """Return ``variances`` as a float array, raising if any entry is negative or NaN."""
    variances = np.asarray(variances, dtype=float)
    if np.any(np.isnan(variances)) or np.any(variances < 0):
        raise NumericDomainError(
            "Diffusion variances must be non-negative",
            {"variances": variances.tolist()},
        )
    return variances


def _edge_arrays(tree: DiffusionTree):
    """Child ids, parent ids and lengths of every edge reachable from the root."""
    child = tree.edges()
    parent = tree.parent[child]
    return child, parent, tree.times[child] - tree.times[parent]


# =============================================================================
# LOG-DENSITIES
# =============================================================================

def gaussian_logpdf(x, mean, var) -> np.ndarray:
    """
    Elementwise Normal log-density that tolerates zero variance.

    A zero-variance entry is a point mass: it contributes 0 when ``x``
    equals ``mean`` and -inf otherwise, never NaN.
    """
    x, mean, var = np.broadcast_arrays(
        np.asarray(x, dtype=float), np.asarray(mean, dtype=float), np.asarray(var, dtype=float)
    )
    out = np.empty(x.shape)
    positive = var > 0
    diff = x - mean
    out[positive] = -0.5 * (np.log(2 * np.pi * var[positive]) + diff[positive] ** 2 / var[positive])
    out[~positive] = np.where(diff[~positive] == 0, 0.0, -np.inf)
    return out


def log_structure_prior(tree: DiffusionTree, c: float) -> float:
    """
    Log-probability of the topology and divergence times under the DDT.

    Returns -inf if divergence times fail to increase along some edge.

    Raises:
        NumericDomainError: If a time is outside its domain or ``c <= 0``.
    """
    divergence = DivergenceFunction(c)
    check_divergence_times(tree)
    child, parent, lengths = _edge_arrays(tree)
    if np.any(lengths <= 0):
        return -np.inf

    counts = tree.leaf_counts()
    nodes = tree.branch_nodes
    t_v = tree.times[nodes]
    t_u = tree.times[tree.parent[nodes]]
    l = counts[tree.children[nodes, 0]]
    r = counts[tree.children[nodes, 1]]
    m = l + r

    log_rate = np.log(divergence.rate(t_v))
    survival = -(divergence.cumulative(t_v) - divergence.cumulative(t_u)) * harmonic_number(m - 1)
    topology = gammaln(l) + gammaln(r) - gammaln(m)
    return float(np.sum(log_rate + survival + topology))


def log_location_prior(tree: DiffusionTree, variances: np.ndarray,
                       item_group: np.ndarray) -> float:
    """
    Gaussian log-density of all location increments along the tree edges.

    Args:
        tree: Diffusion tree with (2K, J) node locations
        variances: (G,) diffusion variance of each major item group
        item_group: (J,) group index of each item

    Raises:
        NumericDomainError: If a variance is negative.
    """
    variances = check_variances(variances)
    child, parent, lengths = _edge_arrays(tree)
    if np.any(lengths < 0):
        return -np.inf
    increments = tree.locations[child] - tree.locations[parent]
    edge_var = lengths[:, None] * variances[item_group][None, :]
    return float(gaussian_logpdf(increments, 0.0, edge_var).sum())


def log_ddt_prior(tree: DiffusionTree, c: float, variances: np.ndarray,
                  item_group: np.ndarray) -> float:
    """Joint DDT log-prior of structure, times and locations."""
    structure = log_structure_prior(tree, c)
    if not np.isfinite(structure):
        return structure
    return structure + log_location_prior(tree, variances, item_group)


def divergence_exposure(tree: DiffusionTree) -> float:
    """
    Sum over branching nodes of H_{m-1} (log(1 - t_u) - log(1 - t_v)).

    The structure prior depends on c only through
    (K - 1) log c - c * divergence_exposure(tree), which makes a Gamma prior
    on c conjugate.
    """
    counts = tree.leaf_counts()
    nodes = tree.branch_nodes
    t_v = tree.times[nodes]
    t_u = tree.times[tree.parent[nodes]]
    return float(np.sum(harmonic_number(counts[nodes] - 1) * (np.log1p(-t_u) - np.log1p(-t_v))))
