"""
Tests for the arena diffusion tree.

Run: pytest tests/test_tree.py -v
"""

import numpy as np
import pytest

from ddtlcm.exceptions import InputValidationError, NumericDomainError
from ddtlcm.tree import NO_NODE, DiffusionTree


class TestStructure:
    """Labels, traversals and leaf bookkeeping."""

    def test_layout(self, three_leaf_tree: DiffusionTree) -> None:
        tree = three_leaf_tree
        assert tree.n_leaves == 3
        assert tree.n_nodes == 6
        assert tree.root == 5
        assert tree.root_child == 3
        assert list(tree.branch_nodes) == [3, 4]

    def test_labels(self, three_leaf_tree: DiffusionTree) -> None:
        labels = [three_leaf_tree.node_label(n) for n in range(6)]
        assert labels == ["v1", "v2", "v3", "u2", "u3", "u1"]

    def test_preorder_visits_parents_first(self, three_leaf_tree: DiffusionTree) -> None:
        order = three_leaf_tree.preorder()
        assert order[0] == three_leaf_tree.root
        assert sorted(order) == list(range(6))
        position = {node: i for i, node in enumerate(order)}
        for node in order[1:]:
            assert position[three_leaf_tree.parent[node]] < position[node]

    def test_leaf_counts_and_sets(self, three_leaf_tree: DiffusionTree) -> None:
        counts = three_leaf_tree.leaf_counts()
        assert list(counts) == [1, 1, 1, 3, 2, 3]
        sets = three_leaf_tree.leaf_sets()
        assert list(sets[4]) == [0, 1]
        assert list(sets[3]) == [0, 1, 2]

    def test_sibling_and_ancestors(self, three_leaf_tree: DiffusionTree) -> None:
        assert three_leaf_tree.sibling(0) == 1
        assert three_leaf_tree.sibling(4) == 2
        assert three_leaf_tree.ancestors(0) == [4, 3, 5]

    def test_edges_exclude_root(self, three_leaf_tree: DiffusionTree) -> None:
        edges = three_leaf_tree.edges()
        assert len(edges) == 5
        assert three_leaf_tree.root not in edges


class TestValidation:
    """Structural and time-domain invariants."""

    def test_valid_tree(self, three_leaf_tree: DiffusionTree) -> None:
        assert three_leaf_tree.is_valid()
        three_leaf_tree.validate()

    def test_non_increasing_time_is_invalid(self, three_leaf_tree: DiffusionTree) -> None:
        tree = three_leaf_tree.copy()
        tree.times[4] = 0.1  # below its parent at 0.2
        assert not tree.is_valid()
        with pytest.raises(InputValidationError):
            tree.validate()

    def test_time_outside_domain(self, three_leaf_tree: DiffusionTree) -> None:
        tree = three_leaf_tree.copy()
        tree.times[4] = 1.0
        assert not tree.is_valid()
        with pytest.raises(NumericDomainError):
            tree.validate()

    def test_cycle_is_invalid(self, three_leaf_tree: DiffusionTree) -> None:
        tree = three_leaf_tree.copy()
        tree.children[4] = [0, 3]
        assert not tree.is_valid()

    def test_wrong_node_count(self) -> None:
        with pytest.raises(InputValidationError):
            DiffusionTree([NO_NODE] * 3, [[NO_NODE, NO_NODE]] * 3, [0.0] * 3, np.zeros((3, 2)))


class TestTransforms:
    """Copies, freezing, relabeling and the leaf covariance."""

    def test_copy_is_independent(self, three_leaf_tree: DiffusionTree) -> None:
        tree = three_leaf_tree.copy()
        tree.locations[0, 0] = 99.0
        assert three_leaf_tree.locations[0, 0] != 99.0

    def test_freeze_blocks_writes(self, three_leaf_tree: DiffusionTree) -> None:
        tree = three_leaf_tree.copy().freeze()
        with pytest.raises(ValueError):
            tree.times[3] = 0.5

    def test_relabel_moves_leaves(self, three_leaf_tree: DiffusionTree) -> None:
        relabeled = three_leaf_tree.relabel_leaves([2, 0, 1])
        assert relabeled.is_valid()
        np.testing.assert_allclose(relabeled.locations[2], three_leaf_tree.locations[0])
        np.testing.assert_allclose(relabeled.locations[0], three_leaf_tree.locations[1])
        # old leaves v1, v2 (now 2, 0) still share parent u3
        assert relabeled.parent[2] == relabeled.parent[0] == 4

    def test_relabel_rejects_non_permutation(self, three_leaf_tree: DiffusionTree) -> None:
        with pytest.raises(InputValidationError):
            three_leaf_tree.relabel_leaves([0, 0, 1])

    def test_leaf_covariance(self, three_leaf_tree: DiffusionTree) -> None:
        cov = three_leaf_tree.leaf_covariance()
        expected = np.array([
            [1.0, 0.6, 0.2],
            [0.6, 1.0, 0.2],
            [0.2, 0.2, 1.0],
        ])
        np.testing.assert_allclose(cov, expected)


class TestExport:
    """Newick strings and node tables."""

    def test_newick(self, three_leaf_tree: DiffusionTree) -> None:
        newick = three_leaf_tree.to_newick(digits=1)
        assert newick == "(((v1:0.4,v2:0.4)u3:0.4,v3:0.8)u2:0.2)u1;"

    def test_frame(self, three_leaf_tree: DiffusionTree) -> None:
        frame = three_leaf_tree.to_frame()
        assert len(frame) == 6
        assert frame.loc[0, "node"] == "u1"
        assert frame["is_leaf"].sum() == 3
        assert "item_9" in frame.columns
