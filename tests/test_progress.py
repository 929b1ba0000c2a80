"""
Tests for progress callbacks.

Run: pytest tests/test_progress.py -v
"""

import pytest

from ddtlcm.progress import ChainProgressCallback, ProgressUpdate
from ddtlcm.sampler import run_chain
from ddtlcm.schemas import DDTLCMParams


class TestProgressUpdate:

    def test_json_round_trip(self) -> None:
        update = ProgressUpdate(chain_id="c1", progress=0.5, message="halfway",
                                iteration=5, total_iters=10, extra={"c": 1.2})
        restored = ProgressUpdate.from_json(update.to_json())
        assert restored == update


class TestChainProgressCallback:
    """Rate limiting and forwarding."""

    def test_rate_limited_but_reports_last(self) -> None:
        updates = []
        callback = ChainProgressCallback(total_iters=50, update_interval=3600, sink=updates.append)
        for i in range(1, 51):
            callback(iteration=i, log_posterior=-100.0, acceptance_rate=0.3)
        # first call and final iteration only
        assert [u.iteration for u in updates] == [1, 50]
        assert updates[-1].progress == pytest.approx(1.0)
        assert "acceptance: 0.300" in updates[-1].message

    def test_every_iteration_without_interval(self) -> None:
        updates = []
        callback = ChainProgressCallback(total_iters=5, update_interval=0.0, sink=updates.append)
        for i in range(1, 6):
            callback(iteration=i)
        assert len(updates) == 5
        assert callback.n_updates == 5

    def test_with_chain(self, simulated, caplog) -> None:
        params = DDTLCMParams(n_classes=3, total_iters=4, em_n_init=1)
        updates = []
        callback = ChainProgressCallback(total_iters=4, update_interval=0.0,
                                         sink=updates.append, chain_id="demo")
        with caplog.at_level("INFO", logger="ddtlcm"):
            run_chain(simulated["responses"], simulated["membership"], params,
                      seed=0, progress_callback=callback)
        assert [u.iteration for u in updates] == [1, 2, 3, 4]
        assert all(u.chain_id == "demo" for u in updates)
        assert "tree_accepted" in updates[0].extra
        assert any("[demo]" in record.getMessage() for record in caplog.records)
