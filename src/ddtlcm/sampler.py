"""
Chain driver for the DDT-LCM sampler.

Every iteration runs one Metropolis-Hastings tree move followed by one
Polya-Gamma Gibbs sweep, then records the resulting state. Iterations are
never skipped or reordered, so sample ``i`` is always the state after
iteration ``i``. All randomness comes from one ``numpy.random.Generator``
per chain, created from the chain's seed, which makes a chain fully
reproducible from ``(data, params, seed)``.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

import numpy as np
from pydantic import ValidationError
from scipy import stats
from scipy.special import gammaln, xlogy

from .config import get_settings
from .data import MembershipLike, ResponseData, validate_response_data
from .exceptions import InputValidationError, NumericDomainError
from .initialize import initialize_state
from .models.ddt import log_ddt_prior
from .models.gibbs import gibbs_sweep
from .models.lca import lcm_log_likelihood
from .models.proposal import propose_and_accept
from .schemas import DDTLCMParams
from .state import ChainState, PosteriorSample


logger = logging.getLogger(__name__)

SeedLike = Union[None, int, np.random.SeedSequence]


@dataclass
class ChainResult:
    """
    A fitted chain: every recorded sample plus what is needed to summarize it.

    ``samples[i]`` is the state after iteration ``i``; there are
    ``completed_iters`` of them, fewer than ``params.total_iters`` only
    when the run was interrupted.
    """
    samples: List[PosteriorSample]
    data: ResponseData
    params: DDTLCMParams
    n_accepted: int
    completed_iters: int
    interrupted: bool = False
    seed: Any = None
    elapsed_seconds: float = 0.0
    log_posterior_trace: np.ndarray = field(default_factory=lambda: np.empty(0))

    @property
    def acceptance_rate(self) -> float:
        """Fraction of tree moves accepted."""
        if self.completed_iters == 0:
            return 0.0
        return self.n_accepted / self.completed_iters

    @property
    def n_classes(self) -> int:
        return self.params.n_classes

    def __repr__(self) -> str:
        return (
            f"ChainResult(K={self.params.n_classes}, N={self.data.n_subjects}, "
            f"J={self.data.n_items}, iters={self.completed_iters}/{self.params.total_iters}, "
            f"acceptance={self.acceptance_rate:.3f}, interrupted={self.interrupted})"
        )


# =============================================================================
# STATE EVALUATION
# =============================================================================

def log_dirichlet(probs: np.ndarray, concentration: float) -> float:
    """Symmetric Dirichlet log-density; zero probabilities are safe when concentration is 1."""
    K = len(probs)
    return float(gammaln(K * concentration) - K * gammaln(concentration)
                 + np.sum(xlogy(concentration - 1.0, probs)))


def evaluate_state(state: ChainState, data: ResponseData,
                   params: DDTLCMParams) -> Tuple[float, float]:
    """
    Log-prior and log-likelihood of a chain state.

    The prior covers the DDT (structure, times and locations), the
    inverse-gamma priors on the group diffusion variances, the Gamma prior
    on c when it is sampled, and the Dirichlet prior on the class
    probabilities. The likelihood is the observed-data LCM likelihood with
    class assignments summed out.

    Returns:
        Tuple (log_prior, log_likelihood)
    """
    variances = state.diffusion_variances
    log_prior = log_ddt_prior(state.tree, state.c, variances, data.item_group)
    log_prior += float(stats.invgamma.logpdf(
        variances, a=params.variance_prior_shape, scale=params.variance_prior_rate
    ).sum())
    if not params.fix_c:
        log_prior += float(stats.gamma.logpdf(
            state.c, a=params.c_prior_shape, scale=1.0 / params.c_prior_rate
        ))
    log_prior += log_dirichlet(state.class_probs, params.class_prob_concentration)

    log_lik = lcm_log_likelihood(data.filled, data.mask, state.class_probs,
                                 state.tree.leaf_locations)
    return log_prior, log_lik


# =============================================================================
# CHAIN DRIVER
# =============================================================================

def _coerce_params(params: Union[DDTLCMParams, Mapping[str, Any]]) -> DDTLCMParams:
    if isinstance(params, DDTLCMParams):
        return params
    try:
        return DDTLCMParams(**params)
    except ValidationError as e:
        raise InputValidationError(f"Invalid sampler parameters: {e}") from e


def run_chain(data, item_membership: MembershipLike,
              params: Union[DDTLCMParams, Mapping[str, Any]],
              seed: SeedLike = None,
              initial_state: Optional[ChainState] = None,
              progress_callback: Optional[Callable] = None,
              should_stop: Optional[Callable[[], bool]] = None) -> ChainResult:
    """
    Run one DDT-LCM chain for ``params.total_iters`` iterations.

    Args:
        data: (N, J) binary response matrix, array-like or DataFrame
        item_membership: Partition of the J items into major groups
        params: Sampler parameters, or a mapping of them
        seed: Seed for the chain's random number generator
        initial_state: Optional state to start from instead of ``params.init_method``
        progress_callback: Called after every iteration with keyword arguments
            ``iteration``, ``log_posterior``, ``acceptance_rate`` and ``extra``
        should_stop: Polled before every iteration; returning True ends the
            run early, keeping the iterations completed so far

    Returns:
        ChainResult with one recorded sample per completed iteration

    Raises:
        InputValidationError: Invalid data, membership or parameters; raised
            before any iteration runs.
        NumericDomainError: A recorded state has a non-finite log-posterior.
    """
    params = _coerce_params(params)
    response = validate_response_data(data, item_membership, allow_missing=params.allow_missing)
    if params.n_classes > response.n_subjects:
        raise InputValidationError(
            f"n_classes ({params.n_classes}) exceeds the number of subjects ({response.n_subjects})"
        )

    rng = np.random.default_rng(seed)
    start_time = time.time()
    logger.info(
        f"Starting DDT-LCM chain: N={response.n_subjects}, J={response.n_items}, "
        f"G={response.n_groups}, K={params.n_classes}, iterations={params.total_iters}, "
        f"init={params.init_method if initial_state is None else 'provided'}"
    )

    state = initialize_state(response, params, rng, initial_state)

    samples: List[PosteriorSample] = []
    trace = np.empty(params.total_iters)
    n_accepted = 0
    interrupted = False

    for iteration in range(params.total_iters):
        if should_stop is not None and should_stop():
            interrupted = True
            logger.info(f"Chain stopped on request after {iteration} iteration(s)")
            break

        move = propose_and_accept(state.tree, state, response, rng)
        if move.accepted:
            n_accepted += 1
        state = gibbs_sweep(move.tree, state, response, params, rng)

        log_prior, log_lik = evaluate_state(state, response, params)
        log_posterior = log_prior + log_lik
        if not np.isfinite(log_posterior):
            raise NumericDomainError(
                f"Non-finite log-posterior at iteration {iteration}",
                {
                    "iteration": iteration,
                    "log_prior": log_prior,
                    "log_likelihood": log_lik,
                    "c": state.c,
                    "diffusion_variances": state.diffusion_variances.tolist(),
                },
            )

        samples.append(PosteriorSample.from_state(
            state, iteration, log_prior, log_lik, move.accepted
        ))
        trace[iteration] = log_posterior

        if progress_callback is not None:
            progress_callback(
                iteration=iteration + 1,
                log_posterior=log_posterior,
                acceptance_rate=n_accepted / (iteration + 1),
                extra={"c": state.c, "tree_accepted": move.accepted},
            )

    completed = len(samples)
    elapsed = time.time() - start_time
    result = ChainResult(
        samples=samples,
        data=response,
        params=params,
        n_accepted=n_accepted,
        completed_iters=completed,
        interrupted=interrupted,
        seed=seed,
        elapsed_seconds=elapsed,
        log_posterior_trace=trace[:completed],
    )
    logger.info(
        f"Chain finished: {completed} iteration(s) in {elapsed:.1f}s, "
        f"tree acceptance rate {result.acceptance_rate:.3f}"
    )
    return result


def run_chains(data, item_membership: MembershipLike,
               params: Union[DDTLCMParams, Mapping[str, Any]],
               n_chains: int = 4, seed: SeedLike = None,
               max_workers: Optional[int] = None,
               should_stop: Optional[Callable[[], bool]] = None) -> List[ChainResult]:
    """
    Run independent chains in a thread pool.

    Each chain gets its own generator from a child of
    ``numpy.random.SeedSequence(seed)``, so the set of chains is
    reproducible and no random state is shared between threads.

    Args:
        data, item_membership, params: As for ``run_chain``
        n_chains: Number of chains
        seed: Root seed
        max_workers: Thread pool size; defaults to ``Settings.max_chain_workers``
        should_stop: Shared stop request, polled by every chain

    Returns:
        List of ChainResult in chain order
    """
    if n_chains < 1:
        raise InputValidationError(f"n_chains must be at least 1, got {n_chains}")
    params = _coerce_params(params)
    # Validate once up front so a bad input fails before any thread starts
    validate_response_data(data, item_membership, allow_missing=params.allow_missing)

    root = seed if isinstance(seed, np.random.SeedSequence) else np.random.SeedSequence(seed)
    child_seeds = root.spawn(n_chains)
    workers = max_workers or get_settings().max_chain_workers
    logger.info(f"Running {n_chains} chains on up to {workers} worker thread(s)")

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(run_chain, data, item_membership, params,
                            seed=child, should_stop=should_stop)
            for child in child_seeds
        ]
        return [future.result() for future in futures]
