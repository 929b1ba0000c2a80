"""
Chain state and recorded posterior samples.

``ChainState`` is the working state handed from one step of an iteration to
the next. ``PosteriorSample`` is the read-only snapshot recorded at the end
of an iteration; its arrays are frozen so a recorded sample can never be
changed by later iterations or by summarization.
"""

from dataclasses import dataclass

import numpy as np
from scipy.special import expit

from .tree import DiffusionTree


@dataclass
class ChainState:
    """Current tree and LCM parameters of one chain."""
    tree: DiffusionTree
    diffusion_variances: np.ndarray
    class_probs: np.ndarray
    assignments: np.ndarray
    c: float

    @property
    def n_classes(self) -> int:
        return self.tree.n_leaves

    @property
    def item_logits(self) -> np.ndarray:
        return self.tree.leaf_locations

    @property
    def response_probs(self) -> np.ndarray:
        """(K, J) item response probabilities of every class."""
        return expit(self.tree.leaf_locations)


@dataclass(frozen=True)
class PosteriorSample:
    """Immutable snapshot of the chain after one iteration."""
    iteration: int
    tree: DiffusionTree
    diffusion_variances: np.ndarray
    class_probs: np.ndarray
    assignments: np.ndarray
    c: float
    log_prior: float
    log_likelihood: float
    tree_accepted: bool

    @classmethod
    def from_state(cls, state: ChainState, iteration: int, log_prior: float,
                   log_likelihood: float, tree_accepted: bool) -> "PosteriorSample":
        """Snapshot ``state``, copying and freezing every array."""
        arrays = []
        for arr in (state.diffusion_variances, state.class_probs, state.assignments):
            arr = np.array(arr, copy=True)
            arr.setflags(write=False)
            arrays.append(arr)
        variances, class_probs, assignments = arrays
        return cls(
            iteration=iteration,
            tree=state.tree.copy().freeze(),
            diffusion_variances=variances,
            class_probs=class_probs,
            assignments=assignments,
            c=float(state.c),
            log_prior=float(log_prior),
            log_likelihood=float(log_likelihood),
            tree_accepted=bool(tree_accepted),
        )

    @property
    def log_posterior(self) -> float:
        return self.log_prior + self.log_likelihood

    @property
    def response_probs(self) -> np.ndarray:
        return expit(self.tree.leaf_locations)

    def to_state(self) -> ChainState:
        """Writable ChainState with the same values, e.g. to restart a chain."""
        return ChainState(
            tree=self.tree.copy(),
            diffusion_variances=self.diffusion_variances.copy(),
            class_probs=self.class_probs.copy(),
            assignments=self.assignments.copy(),
            c=self.c,
        )
