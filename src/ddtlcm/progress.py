"""
Progress reporting for long-running chains.

This module provides:
1. ProgressUpdate - A single progress message, serializable to JSON
2. ChainProgressCallback - Rate-limited callback for ``run_chain`` that logs
   progress and forwards updates to an optional sink

Usage:
    callback = ChainProgressCallback(total_iters=params.total_iters, chain_id="chain-1")
    result = run_chain(data, membership, params, seed=1, progress_callback=callback)
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import get_settings


logger = logging.getLogger(__name__)


@dataclass
class ProgressUpdate:
    """A single progress update message."""
    chain_id: str
    progress: float  # 0.0 to 1.0
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    iteration: Optional[int] = None
    total_iters: Optional[int] = None
    log_posterior: Optional[float] = None
    acceptance_rate: Optional[float] = None

    # Performance metrics
    iterations_per_second: Optional[float] = None
    elapsed_seconds: Optional[float] = None
    eta_seconds: Optional[float] = None

    extra: Optional[dict] = None

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str) -> "ProgressUpdate":
        """Deserialize from JSON string."""
        return cls(**json.loads(data))


class ChainProgressCallback:
    """
    Callback for tracking DDT-LCM chain progress.

    Called by ``run_chain`` after every iteration. Updates are rate limited
    to one per ``update_interval`` seconds, except for the final iteration,
    which is always reported.

    Args:
        total_iters: Number of iterations the chain will run
        update_interval: Minimum seconds between updates; defaults to
            ``Settings.progress_update_interval_seconds``
        sink: Optional callable receiving every emitted ProgressUpdate
        chain_id: Identifier included in every update
    """

    def __init__(
        self,
        total_iters: int,
        update_interval: Optional[float] = None,
        sink: Optional[Callable[[ProgressUpdate], None]] = None,
        chain_id: str = "chain",
    ):
        if update_interval is None:
            update_interval = get_settings().progress_update_interval_seconds
        self.total_iters = total_iters
        self.update_interval = update_interval
        self.sink = sink
        self.chain_id = chain_id

        self.current_iter = 0
        self.start_time = None
        self.last_update_time = 0.0
        self.n_updates = 0

    def __call__(
        self,
        iteration: int,
        log_posterior: Optional[float] = None,
        acceptance_rate: Optional[float] = None,
        extra: Optional[dict] = None,
    ):
        """
        Report progress for one iteration.

        Args:
            iteration: Number of completed iterations
            log_posterior: Log-posterior of the current state
            acceptance_rate: Running tree-move acceptance rate
            extra: Additional sampler metrics
        """
        current_time = time.time()
        if self.start_time is None:
            self.start_time = current_time
        self.current_iter = iteration

        is_last = iteration >= self.total_iters
        if not is_last and current_time - self.last_update_time < self.update_interval:
            return
        self.last_update_time = current_time

        progress = min(iteration / self.total_iters, 1.0) if self.total_iters > 0 else 0.0
        elapsed = current_time - self.start_time
        rate = iteration / elapsed if elapsed > 0 else None
        eta_seconds = (self.total_iters - iteration) / rate if rate else None

        message_parts = [f"Iteration {iteration}/{self.total_iters}"]
        if log_posterior is not None:
            message_parts.append(f"log-posterior: {log_posterior:.2f}")
        if acceptance_rate is not None:
            message_parts.append(f"acceptance: {acceptance_rate:.3f}")
        message = " | ".join(message_parts)

        update = ProgressUpdate(
            chain_id=self.chain_id,
            progress=progress,
            message=message,
            iteration=iteration,
            total_iters=self.total_iters,
            log_posterior=log_posterior,
            acceptance_rate=acceptance_rate,
            iterations_per_second=rate,
            elapsed_seconds=elapsed,
            eta_seconds=eta_seconds,
            extra=extra,
        )
        self.n_updates += 1
        logger.info(f"[{self.chain_id}] {message}")
        if self.sink is not None:
            self.sink(update)
