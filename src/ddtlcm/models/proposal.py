"""
Metropolis-Hastings moves on the diffusion tree.

One move detaches a random subtree and regrafts it somewhere else:

1. Pick the subtree root d uniformly among all nodes except the root anchor
   and its child. Removing d's parent p joins d's sibling s directly to
   d's grandparent, leaving a pruned tree over the remaining leaves.
2. Choose a new attachment point on the pruned tree with the DDT path
   process of a new particle, conditioned on diverging strictly before
   t_d: on the edge into node b, which n(b) leaves lie below, the particle
   diverges with hazard a(t) / n(b); at a branching node it follows child c
   with probability n(c) / n(b). The conditional kernel is sampled exactly:
   the probability of diverging before t_d is computed for every edge from
   the bottom up, then the path is drawn from the top down and the
   divergence time is found by inverting the truncated cumulative hazard.
3. Draw the location of the new parent node from the Brownian bridge
   between the endpoints of the chosen edge.

The reverse move detaches d again from the proposed tree, which yields the
same pruned tree, so the Hastings correction compares the kernel density of
the old and new attachment points on one pruned tree. The normalizing
probability of diverging before t_d is shared by both directions and cancels.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..data import ResponseData
from ..state import ChainState
from ..tree import NO_NODE, DiffusionTree
from .ddt import DivergenceFunction, gaussian_logpdf, log_ddt_prior


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attachment:
    """Where a subtree hangs: on the edge into ``edge_node``, at ``time``, at ``location``."""
    edge_node: int
    time: float
    location: np.ndarray


@dataclass(frozen=True)
class TreeMove:
    """Outcome of one Metropolis-Hastings tree move."""
    tree: DiffusionTree
    accepted: bool
    log_ratio: float
    detached: int
    reason: str = ""


# =============================================================================
# PRUNE AND REGRAFT
# =============================================================================

def detach_candidates(tree: DiffusionTree) -> np.ndarray:
    """Nodes whose subtree may be detached: all but the root anchor and its child."""
    nodes = np.arange(tree.n_nodes - 1)
    return nodes[nodes != tree.root_child]


def prune_subtree(tree: DiffusionTree, node: int) -> Tuple[DiffusionTree, Attachment]:
    """
    Detach the subtree rooted at ``node`` together with its parent.

    Returns a pruned copy, in which the detached parent keeps ``node`` as
    its only child and has no parent, and the attachment that undoes the
    pruning.
    """
    if node == tree.root or node == tree.root_child:
        raise ValueError(f"Cannot detach {tree.node_label(node)}")
    pruned = tree.copy()
    p = int(pruned.parent[node])
    g = int(pruned.parent[p])
    s = pruned.sibling(node)
    old = Attachment(edge_node=s, time=float(pruned.times[p]),
                     location=pruned.locations[p].copy())

    pruned.children[g][pruned.children[g] == p] = s
    pruned.parent[s] = g
    pruned.parent[p] = NO_NODE
    pruned.children[p] = [node, NO_NODE]
    return pruned, old


def regraft_subtree(pruned: DiffusionTree, node: int, attachment: Attachment) -> DiffusionTree:
    """Hang ``node`` (and its detached parent) back onto the pruned tree."""
    tree = pruned.copy()
    p = int(tree.parent[node])
    b = attachment.edge_node
    a = int(tree.parent[b])

    tree.children[a][tree.children[a] == b] = p
    tree.parent[p] = a
    tree.children[p] = [b, node]
    tree.parent[b] = p
    tree.times[p] = attachment.time
    tree.locations[p] = attachment.location
    return tree


# =============================================================================
# DDT REATTACHMENT KERNEL
# =============================================================================

def divergence_probabilities(tree: DiffusionTree, t_limit: float,
                             divergence: DivergenceFunction) -> np.ndarray:
    """
    Probability that a particle entering each edge diverges before ``t_limit``.

    Entry b refers to the edge into node b. Edges that start at or after
    ``t_limit`` and nodes not reachable from the root get 0.
    """
    counts = tree.leaf_counts()
    A = divergence.cumulative
    A_limit = A(t_limit)
    probs = np.zeros(tree.n_nodes)
    for node in tree.postorder():
        if node == tree.root:
            continue
        t_a = tree.times[tree.parent[node]]
        if t_a >= t_limit:
            continue
        m = counts[node]
        if tree.is_leaf(node) or tree.times[node] >= t_limit:
            probs[node] = -np.expm1(-(A_limit - A(t_a)) / m)
        else:
            survive = np.exp(-(A(tree.times[node]) - A(t_a)) / m)
            kids = tree.node_children(node)
            onward = np.sum(counts[kids] / m * probs[kids])
            probs[node] = (1.0 - survive) + survive * onward
    return probs


def sample_attachment(tree: DiffusionTree, t_limit: float, divergence: DivergenceFunction,
                      rng: np.random.Generator) -> Optional[Tuple[int, float]]:
    """
    Draw an attachment edge and time from the DDT path process, given divergence before ``t_limit``.

    Returns:
        (edge_node, time), or None when no divergence before ``t_limit`` is possible.
    """
    probs = divergence_probabilities(tree, t_limit, divergence)
    node = tree.root_child
    if not probs[node] > 0:
        return None

    counts = tree.leaf_counts()
    A = divergence.cumulative
    while True:
        t_a = tree.times[tree.parent[node]]
        m = counts[node]
        t_end = min(tree.times[node], t_limit)
        survive_end = np.exp(-(A(t_end) - A(t_a)) / m)

        if tree.is_leaf(node) or tree.times[node] >= t_limit:
            break
        p_here = (1.0 - survive_end) / probs[node]
        if rng.random() < p_here:
            break
        kids = tree.node_children(node)
        weights = counts[kids] * probs[kids]
        node = int(kids[rng.choice(len(kids), p=weights / weights.sum())])

    # Invert the cumulative hazard truncated to (t_a, t_end)
    u = rng.random()
    delta = -m * np.log1p(-u * (1.0 - survive_end))
    return node, float(divergence.inverse_cumulative(A(t_a) + delta))


def log_attachment_density(tree: DiffusionTree, edge_node: int, time: float,
                           divergence: DivergenceFunction) -> float:
    """
    Unnormalized log-density of attaching on the edge into ``edge_node`` at ``time``.

    Product of survival along every edge traversed, the branch choices made
    at each branching node, and the divergence density on the final edge.
    """
    counts = tree.leaf_counts()
    A = divergence.cumulative
    m = counts[edge_node]
    t_a = tree.times[tree.parent[edge_node]]
    log_q = np.log(divergence.rate(time) / m) - (A(time) - A(t_a)) / m

    child = edge_node
    node = int(tree.parent[edge_node])
    while node != tree.root:
        m = counts[node]
        t_a = tree.times[tree.parent[node]]
        log_q += -(A(tree.times[node]) - A(t_a)) / m + np.log(counts[child] / m)
        child = node
        node = int(tree.parent[node])
    return float(log_q)


def bridge_moments(tree: DiffusionTree, edge_node: int, time: float,
                   variances: np.ndarray, item_group: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Mean and variance of the Brownian bridge at ``time`` on the edge into ``edge_node``."""
    a = tree.parent[edge_node]
    t_a, t_b = tree.times[a], tree.times[edge_node]
    x_a, x_b = tree.locations[a], tree.locations[edge_node]
    weight = (time - t_a) / (t_b - t_a)
    mean = x_a + weight * (x_b - x_a)
    var = variances[item_group] * (time - t_a) * (t_b - time) / (t_b - t_a)
    return mean, var


# =============================================================================
# METROPOLIS-HASTINGS STEP
# =============================================================================

def propose_and_accept(tree: DiffusionTree, state: ChainState, data: ResponseData,
                       rng: np.random.Generator) -> TreeMove:
    """
    One detach-and-regraft Metropolis-Hastings move on the tree.

    The log acceptance ratio is
        [log prior(T') - log prior(T)]
        + [log lik(data | T', params) - log lik(data | T, params)]
        + [log q(old attachment) - log q(new attachment)],
    compared against log U so the ratio is never exponentiated.
    A regraft never moves leaf locations and the likelihood depends on the
    tree only through them, so the likelihood term is identically zero and is
    not computed.

    Args:
        tree: Current tree (not modified)
        state: Current parameters (diffusion variances, c, class probabilities)
        data: Validated response data
        rng: Random number generator

    Returns:
        TreeMove holding the proposed tree if accepted, otherwise ``tree``.
    """
    divergence = DivergenceFunction(state.c)
    variances = state.diffusion_variances
    item_group = data.item_group

    node = int(rng.choice(detach_candidates(tree)))
    pruned, old = prune_subtree(tree, node)
    t_limit = float(tree.times[node])

    drawn = sample_attachment(pruned, t_limit, divergence, rng)
    if drawn is None:
        return TreeMove(tree, False, -np.inf, node, reason="no attachment point before the subtree")
    edge_node, time = drawn
    mean, var = bridge_moments(pruned, edge_node, time, variances, item_group)
    location = mean + np.sqrt(var) * rng.standard_normal(len(mean))
    new = Attachment(edge_node=edge_node, time=time, location=location)

    proposed = regraft_subtree(pruned, node, new)
    if not proposed.is_valid():
        return TreeMove(tree, False, -np.inf, node, reason="divergence times not increasing")

    log_prior_new = log_ddt_prior(proposed, state.c, variances, item_group)
    if not np.isfinite(log_prior_new):
        return TreeMove(tree, False, -np.inf, node, reason="zero prior density")
    log_prior_old = log_ddt_prior(tree, state.c, variances, item_group)

    old_mean, old_var = bridge_moments(pruned, old.edge_node, old.time, variances, item_group)
    log_q_backward = (log_attachment_density(pruned, old.edge_node, old.time, divergence)
                      + gaussian_logpdf(old.location, old_mean, old_var).sum())
    log_q_forward = (log_attachment_density(pruned, new.edge_node, new.time, divergence)
                     + gaussian_logpdf(new.location, mean, var).sum())

    log_ratio = float((log_prior_new - log_prior_old)
                      + (log_q_backward - log_q_forward))

    if np.log(rng.random()) < log_ratio:
        logger.debug(
            f"Accepted regraft of {tree.node_label(node)} onto edge into "
            f"{tree.node_label(edge_node)} at t={time:.4f} (log ratio {log_ratio:.3f})"
        )
        return TreeMove(proposed, True, log_ratio, node)
    return TreeMove(tree, False, log_ratio, node)
