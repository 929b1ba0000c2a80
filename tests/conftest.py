"""
Shared fixtures: a small fixed diffusion tree and responses simulated from it.

The tree has three classes. Classes 1 and 2 share a long path and split
late; class 3 splits off early. Item logits are far from zero so the
classes are well separated and short chains recover them.
"""

import numpy as np
import pytest

from ddtlcm.data import validate_response_data
from ddtlcm.schemas import DDTLCMParams
from ddtlcm.state import ChainState
from ddtlcm.tree import NO_NODE, DiffusionTree


N_SUBJECTS = 300
N_ITEMS = 9
TRUE_CLASS_PROBS = np.array([0.4, 0.35, 0.25])

# Three groups of three items
MEMBERSHIP = {"diet": [0, 1, 2], "activity": [3, 4, 5], "sleep": [6, 7, 8]}

# Leaf logits; class 1 and 2 differ on the last six items only
TRUE_LOGITS = np.array([
    [2.5, 2.5, 2.5, 2.5, 2.5, 2.5, 2.5, 2.5, 2.5],
    [2.5, 2.5, 2.5, -2.5, -2.5, -2.5, -2.5, -2.5, -2.5],
    [-2.5, -2.5, -2.5, -2.5, -2.5, -2.5, 2.5, 2.5, 2.5],
])


def make_three_leaf_tree(leaf_logits=TRUE_LOGITS) -> DiffusionTree:
    """
    u1 (t=0) -> u2 (t=0.2) -> {u3 (t=0.6) -> {v1, v2}, v3}.

    Node ids: v1..v3 = 0..2, u2 = 3, u3 = 4, u1 = 5.
    """
    leaf_logits = np.asarray(leaf_logits, dtype=float)
    J = leaf_logits.shape[1]
    parent = [4, 4, 3, 5, 3, NO_NODE]
    children = [
        [NO_NODE, NO_NODE],
        [NO_NODE, NO_NODE],
        [NO_NODE, NO_NODE],
        [4, 2],
        [0, 1],
        [3, NO_NODE],
    ]
    times = [1.0, 1.0, 1.0, 0.2, 0.6, 0.0]
    locations = np.zeros((6, J))
    locations[:3] = leaf_logits
    locations[4] = leaf_logits[:2].mean(axis=0)
    locations[3] = leaf_logits.mean(axis=0) / 2
    return DiffusionTree(parent, children, times, locations)


def simulate_responses(leaf_logits, class_probs, n_subjects, rng):
    """Draw classes and binary responses from a latent class model."""
    probs = 1.0 / (1.0 + np.exp(-np.asarray(leaf_logits)))
    classes = rng.choice(len(class_probs), size=n_subjects, p=class_probs)
    responses = (rng.random((n_subjects, probs.shape[1])) < probs[classes]).astype(float)
    return responses, classes


@pytest.fixture
def three_leaf_tree() -> DiffusionTree:
    return make_three_leaf_tree()


@pytest.fixture
def simulated():
    """Responses, true classes and membership for the three-class tree."""
    rng = np.random.default_rng(20240101)
    responses, classes = simulate_responses(TRUE_LOGITS, TRUE_CLASS_PROBS, N_SUBJECTS, rng)
    return {"responses": responses, "classes": classes, "membership": MEMBERSHIP}


@pytest.fixture
def response_data(simulated):
    return validate_response_data(simulated["responses"], simulated["membership"])


@pytest.fixture
def params() -> DDTLCMParams:
    """Short chains with a cheap EM initialization."""
    return DDTLCMParams(n_classes=3, total_iters=40, em_n_init=3, em_max_iter=50)


@pytest.fixture
def true_state(three_leaf_tree, simulated) -> ChainState:
    """Chain state at the generating parameters."""
    return ChainState(
        tree=three_leaf_tree,
        diffusion_variances=np.ones(3),
        class_probs=TRUE_CLASS_PROBS.copy(),
        assignments=simulated["classes"].copy(),
        c=1.0,
    )
