"""
Diffusion tree representation.

A Dirichlet diffusion tree over K latent classes is stored as an arena of
2K node records indexed by integer id. Parent and child links are integer
indices into the arena rather than object references, so copying a tree is
a handful of array copies and a proposal never touches the tree it was
made from.

Node layout:
- ``0 .. K-1``: leaves; leaf k is latent class k (label ``v{k+1}``)
- ``K .. 2K-2``: branching nodes with exactly two children (``u2 .. uK``)
- ``2K-1``: root anchor (``u1``) at time 0 and location 0 with a single
  child, the first branching node. The edge below it is the root edge.

Divergence times strictly increase from the root to every leaf; leaves sit
at time 1. Every node carries a location vector of length J (one entry per
item). The slice of that vector over a major item group is the node's
location for that group, and a leaf's location is the vector of item logits
of its class.
"""

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import InputValidationError, NumericDomainError


LEAF_TIME = 1.0
NO_NODE = -1


class DiffusionTree:
    """
    Rooted binary tree with divergence times and per-item node locations.

    Args:
        parent: (2K,) parent index of each node, -1 for the root anchor
        children: (2K, 2) child indices, -1 where absent
        times: (2K,) divergence time of each node
        locations: (2K, J) location of each node
    """

    def __init__(self, parent, children, times, locations):
        self.parent = np.array(parent, dtype=np.int64)
        self.children = np.array(children, dtype=np.int64).reshape(-1, 2)
        self.times = np.array(times, dtype=float)
        self.locations = np.array(locations, dtype=float)
        n_nodes = len(self.parent)
        if n_nodes < 4 or n_nodes % 2 != 0:
            raise InputValidationError(
                f"A tree over K >= 2 leaves needs 2K nodes, got {n_nodes}"
            )
        if (self.children.shape[0] != n_nodes or self.times.shape != (n_nodes,)
                or self.locations.ndim != 2 or self.locations.shape[0] != n_nodes):
            raise InputValidationError("Tree arrays do not agree on the number of nodes")

    # -------------------------------------------------------------------------
    # Basic structure
    # -------------------------------------------------------------------------

    @property
    def n_nodes(self) -> int:
        return len(self.parent)

    @property
    def n_leaves(self) -> int:
        return self.n_nodes // 2

    @property
    def n_items(self) -> int:
        return self.locations.shape[1]

    @property
    def root(self) -> int:
        return self.n_nodes - 1

    @property
    def root_child(self) -> int:
        return int(self.children[self.root, 0])

    @property
    def leaves(self) -> np.ndarray:
        return np.arange(self.n_leaves)

    @property
    def branch_nodes(self) -> np.ndarray:
        return np.arange(self.n_leaves, self.n_nodes - 1)

    @property
    def leaf_locations(self) -> np.ndarray:
        """(K, J) leaf locations, i.e. the item logits of each class."""
        return self.locations[:self.n_leaves]

    def is_leaf(self, node: int) -> bool:
        return node < self.n_leaves

    def node_children(self, node: int) -> np.ndarray:
        kids = self.children[node]
        return kids[kids != NO_NODE]

    def sibling(self, node: int) -> int:
        """Other child of ``node``'s parent."""
        kids = self.children[self.parent[node]]
        return int(kids[1] if kids[0] == node else kids[0])

    def node_label(self, node: int) -> str:
        if self.is_leaf(node):
            return f"v{node + 1}"
        if node == self.root:
            return "u1"
        return f"u{node - self.n_leaves + 2}"

    # -------------------------------------------------------------------------
    # Traversals
    # -------------------------------------------------------------------------

    def preorder(self) -> List[int]:
        """Nodes reachable from the root, parents before children."""
        order = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            order.append(node)
            if len(order) > self.n_nodes:
                # a cycle in the child links; callers detect the overrun
                break
            for child in self.node_children(node)[::-1]:
                stack.append(int(child))
        return order

    def postorder(self) -> List[int]:
        """Nodes reachable from the root, children before parents."""
        return self.preorder()[::-1]

    def edges(self) -> np.ndarray:
        """Reachable non-root nodes; each identifies the edge from its parent."""
        return np.array(self.preorder()[1:], dtype=np.int64)

    def ancestors(self, node: int) -> List[int]:
        """Ancestors of ``node`` from its parent up to the root anchor."""
        path = []
        node = self.parent[node]
        while node != NO_NODE:
            path.append(int(node))
            node = self.parent[node]
        return path

    def leaf_counts(self) -> np.ndarray:
        """Number of leaves below each node; 0 for nodes not reachable from the root."""
        counts = np.zeros(self.n_nodes, dtype=np.int64)
        for node in self.postorder():
            if self.is_leaf(node):
                counts[node] = 1
            else:
                counts[node] = counts[self.node_children(node)].sum()
        return counts

    def leaf_sets(self) -> List[np.ndarray]:
        """Sorted leaf ids below each node (empty for unreachable nodes)."""
        sets = [np.empty(0, dtype=np.int64) for _ in range(self.n_nodes)]
        for node in self.postorder():
            if self.is_leaf(node):
                sets[node] = np.array([node], dtype=np.int64)
            else:
                sets[node] = np.sort(np.concatenate([sets[c] for c in self.node_children(node)]))
        return sets

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def _structure_problem(self) -> Optional[str]:
        """Describe the first structural defect found, or None."""
        K = self.n_leaves
        if self.parent[self.root] != NO_NODE:
            return "root anchor has a parent"
        root_kids = self.node_children(self.root)
        if len(root_kids) != 1:
            return "root anchor must have exactly one child"
        if self.times[self.root] != 0:
            return "root anchor must sit at time 0"

        reached = self.preorder()
        if len(reached) != self.n_nodes or len(set(reached)) != self.n_nodes:
            return "not every node is reachable from the root exactly once"

        for node in range(self.n_nodes - 1):
            kids = self.node_children(node)
            if node < K and len(kids) != 0:
                return f"leaf {self.node_label(node)} has children"
            if node >= K and len(kids) != 2:
                return f"branching node {self.node_label(node)} does not have two children"
            if node not in self.children[self.parent[node]]:
                return f"node {self.node_label(node)} is not a child of its parent"
            if not self.times[node] > self.times[self.parent[node]]:
                return f"divergence time does not increase into {self.node_label(node)}"
        return None

    def is_valid(self) -> bool:
        """True when the arena is a proper tree with strictly increasing times."""
        if self._structure_problem() is not None:
            return False
        internal = self.times[self.n_leaves:-1]
        leaf_times = self.times[:self.n_leaves]
        return bool(
            np.all((internal > 0) & (internal < 1))
            and np.all((leaf_times > 0) & (leaf_times <= LEAF_TIME))
        )

    def validate(self) -> None:
        """
        Raise if the tree breaks an invariant.

        Raises:
            NumericDomainError: A divergence time is outside its domain.
            InputValidationError: The arena does not describe a rooted binary tree.
        """
        internal = self.times[self.n_leaves:-1]
        if not np.all((internal >= 0) & (internal < 1)):
            raise NumericDomainError(
                "Divergence times of branching nodes must lie in [0, 1)",
                {"times": internal.tolist()},
            )
        leaf_times = self.times[:self.n_leaves]
        if not np.all((leaf_times > 0) & (leaf_times <= LEAF_TIME)):
            raise NumericDomainError(
                "Leaf times must lie in (0, 1]", {"times": leaf_times.tolist()}
            )
        problem = self._structure_problem()
        if problem is not None:
            raise InputValidationError(f"Invalid diffusion tree: {problem}")

    # -------------------------------------------------------------------------
    # Copies and transforms
    # -------------------------------------------------------------------------

    def copy(self) -> "DiffusionTree":
        return DiffusionTree(self.parent, self.children, self.times, self.locations)

    def freeze(self) -> "DiffusionTree":
        """Make the arena read-only in place and return it."""
        for arr in (self.parent, self.children, self.times, self.locations):
            arr.setflags(write=False)
        return self

    def relabel_leaves(self, permutation: Sequence[int]) -> "DiffusionTree":
        """
        Return a copy in which leaf k becomes leaf ``permutation[k]``.

        Internal nodes keep their ids; only leaf ids (and therefore class
        labels) move, together with their locations.
        """
        K = self.n_leaves
        permutation = np.asarray(permutation, dtype=np.int64)
        if sorted(permutation.tolist()) != list(range(K)):
            raise InputValidationError(f"Not a permutation of 0..{K - 1}: {permutation.tolist()}")
        node_map = np.arange(self.n_nodes)
        node_map[:K] = permutation

        parent = np.full(self.n_nodes, NO_NODE, dtype=np.int64)
        times = np.empty(self.n_nodes)
        locations = np.empty_like(self.locations)
        parent[node_map] = self.parent
        times[node_map] = self.times
        locations[node_map] = self.locations
        children = np.where(self.children == NO_NODE, NO_NODE, node_map[self.children])
        new_children = np.empty_like(children)
        new_children[node_map] = children
        return DiffusionTree(parent, new_children, times, locations)

    def leaf_covariance(self) -> np.ndarray:
        """
        (K, K) shared path length between leaves.

        Entry (k, l) is the divergence time of the most recent common
        ancestor of leaves k and l; the diagonal holds the leaf times.
        Multiplied by a group's diffusion variance this is the marginal
        covariance of the leaf locations for every item of that group.
        """
        K = self.n_leaves
        cov = np.zeros((K, K))
        sets = self.leaf_sets()
        for node in self.branch_nodes:
            left, right = self.children[node]
            cov[np.ix_(sets[left], sets[right])] = self.times[node]
            cov[np.ix_(sets[right], sets[left])] = self.times[node]
        cov[np.diag_indices(K)] = self.times[:K]
        return cov

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def to_newick(self, digits: int = 4) -> str:
        """Newick string with branch lengths given by time differences."""
        def render(node: int) -> str:
            length = self.times[node] - self.times[self.parent[node]]
            label = f"{self.node_label(node)}:{length:.{digits}f}"
            kids = self.node_children(node)
            if len(kids) == 0:
                return label
            return "(" + ",".join(render(int(c)) for c in kids) + ")" + label

        return "(" + render(self.root_child) + f"){self.node_label(self.root)};"

    def to_frame(self, item_names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        """
        Node table with one row per node and one location column per item.
        """
        if item_names is None:
            item_names = [f"item_{j + 1}" for j in range(self.n_items)]
        counts = self.leaf_counts()
        rows = []
        for node in self.preorder():
            parent = self.parent[node]
            rows.append({
                "node": self.node_label(node),
                "parent": self.node_label(parent) if parent != NO_NODE else None,
                "is_leaf": self.is_leaf(node),
                "time": self.times[node],
                "branch_length": self.times[node] - self.times[parent] if parent != NO_NODE else 0.0,
                "n_leaves": int(counts[node]),
            })
        frame = pd.DataFrame(rows)
        locations = pd.DataFrame(
            self.locations[self.preorder()], columns=list(item_names)
        )
        return pd.concat([frame, locations], axis=1)

    def __repr__(self) -> str:
        return f"DiffusionTree(K={self.n_leaves}, J={self.n_items}, newick={self.to_newick(3)!r})"
