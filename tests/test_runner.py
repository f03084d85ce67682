"""Tests for the distributed runner, communicators and network assembly.

Multi-rank runs use thread ranks: each rank builds its own network over a
ThreadCommunicator and the ranks meet only in collectives.
"""

import numpy as np
import pytest

from plasticnet.config import SimulationConfig
from plasticnet.errors import (
    CollectiveAborted, RunnerStateError, ValidationError,
)
from plasticnet.simulation.comm import SerialCommunicator, ThreadGroup
from plasticnet.simulation.context import SimulationContext
from plasticnet.simulation.monitors import SpikeMonitor
from plasticnet.simulation.network import build_network
from plasticnet.simulation.runner import DistributedRunner, RunnerState


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def static_config():
    """The static-only scenario: 100 inputs, 25 outputs, density 0.5."""
    return SimulationConfig(nbinputs=100, size=25, sparseness=0.5, seed=1,
                            simtime=1.0, with_stdp=False, with_bcpnn=False,
                            nomon=True, kappa=20.0).validate()


@pytest.fixture
def plastic_config():
    return SimulationConfig(nbinputs=40, size=12, sparseness=0.5, seed=3,
                            simtime=0.05, with_stdp=True, with_bcpnn=True,
                            nomon=True, kappa=50.0, winit=0.02, winit2=0.05,
                            eta=0.01).validate()


def _build(config, comm=None):
    context = SimulationContext(seed=config.seed, dt=config.dt, comm=comm)
    network = build_network(config, context)
    return context, network, DistributedRunner(context)


def _run_rank(comm, config):
    context, network, runner = _build(config, comm)
    code = runner.execute(config.simtime)
    edges = {name: (c.src.copy(), c.tgt.copy(), c.transmitted_weights().copy())
             for name, c in network.connections.items()}
    spikes = network.poneurons.spikes.copy()
    return code, runner.report, edges, spikes


def _run_ranks(config, n_ranks):
    if n_ranks == 1:
        return [_run_rank(SerialCommunicator(), config)]
    return ThreadGroup(n_ranks).run(_run_rank, config)


# ---------------------------------------------------------------------------
# Communicators
# ---------------------------------------------------------------------------

class TestCommunicators:
    def test_serial(self):
        comm = SerialCommunicator()
        comm.barrier()
        assert comm.allgather(5) == [5]
        assert comm.reduce_sum(7) == 7

    def test_thread_allgather_and_reduce(self):
        def work(comm):
            gathered = comm.allgather(comm.rank * 10)
            total = comm.reduce_sum(np.array([comm.rank, 1]))
            return gathered, total

        results = ThreadGroup(4).run(work)
        for gathered, _ in results:
            assert gathered == [0, 10, 20, 30]
        np.testing.assert_array_equal(results[0][1], [6, 4])
        assert all(total is None for _, total in results[1:])

    def test_repeated_collectives_do_not_mix(self):
        def work(comm):
            return [comm.allgather((comm.rank, k)) for k in range(50)]

        for per_rank in ThreadGroup(3).run(work):
            for k, gathered in enumerate(per_rank):
                assert gathered == [(0, k), (1, k), (2, k)]

    def test_abort_unblocks_peers(self):
        def work(comm):
            if comm.rank == 0:
                comm.abort(4711)
            comm.barrier()

        with pytest.raises(CollectiveAborted) as info:
            ThreadGroup(3).run(work)
        assert info.value.exit_code == 4711

    def test_error_on_one_rank_releases_others(self):
        def work(comm):
            if comm.rank == 1:
                raise RuntimeError("boom")
            comm.barrier()

        with pytest.raises(RuntimeError, match="boom"):
            ThreadGroup(2).run(work)

    def test_serial_abort_raises(self):
        with pytest.raises(CollectiveAborted) as info:
            SerialCommunicator().abort(4712)
        assert info.value.exit_code == 4712


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class TestStateMachine:
    def test_transitions(self, plastic_config):
        _, _, runner = _build(plastic_config)
        assert runner.state is RunnerState.BUILT
        runner.synchronize()
        assert runner.state is RunnerState.SYNCHRONIZED
        assert runner.run(0.01)
        assert runner.state is RunnerState.RUNNING
        assert runner.run(0.01)
        assert runner.clock.step == 200
        runner.reduce()
        assert runner.state is RunnerState.REDUCING
        runner.stop()
        assert runner.state is RunnerState.STOPPED

    def test_run_requires_synchronize(self, plastic_config):
        _, _, runner = _build(plastic_config)
        with pytest.raises(RunnerStateError):
            runner.run(0.01)

    def test_cannot_resume_after_stop(self, plastic_config):
        _, _, runner = _build(plastic_config)
        assert runner.execute(0.01) == 0
        assert runner.state is RunnerState.STOPPED
        with pytest.raises(RunnerStateError):
            runner.run(0.01)
        with pytest.raises(RunnerStateError):
            runner.stop()

    def test_reduce_requires_running(self, plastic_config):
        _, _, runner = _build(plastic_config)
        runner.synchronize()
        with pytest.raises(RunnerStateError):
            runner.reduce()


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

class TestRuns:
    def test_static_counts_and_weights_unchanged(self, static_config):
        _, network, runner = _build(static_config)
        before = {name: c.count_nonzero() for name, c in network.connections.items()}
        weights = {name: c.weights.copy() for name, c in network.connections.items()}
        assert set(before) == {"sp1", "sp2"}

        assert runner.execute(static_config.simtime) == 0
        assert runner.report.steps == 10000
        assert runner.report.global_counts == before
        for name, c in network.connections.items():
            np.testing.assert_array_equal(c.weights, weights[name])

    def test_network_is_active(self, plastic_config):
        context, network, runner = _build(plastic_config)
        pre = SpikeMonitor(context, network.prneurons)
        post = SpikeMonitor(context, network.poneurons)
        runner.execute(plastic_config.simtime)
        assert len(pre.rows) > 0
        assert len(post.rows) > 0

    @pytest.mark.parametrize("n_ranks", [2, 4])
    def test_partition_invariance(self, plastic_config, n_ranks):
        serial = _run_ranks(plastic_config, 1)[0]
        shards = _run_ranks(plastic_config, n_ranks)

        assert all(code == 0 for code, *_ in shards)
        for name, (src, tgt, w) in serial[2].items():
            np.testing.assert_array_equal(
                np.concatenate([s[2][name][0] for s in shards]), src)
            np.testing.assert_array_equal(
                np.concatenate([s[2][name][1] for s in shards]), tgt)
            np.testing.assert_allclose(
                np.concatenate([s[2][name][2] for s in shards]), w,
                rtol=1e-12, atol=0)
        np.testing.assert_array_equal(
            np.concatenate([s[3] for s in shards]), serial[3])

    @pytest.mark.parametrize("n_ranks", [1, 2, 4])
    def test_reduced_count_is_sum_of_local(self, plastic_config, n_ranks):
        results = _run_ranks(plastic_config, n_ranks)
        reports = [report for _, report, *_ in results]
        root = reports[0]
        assert root.global_counts is not None
        assert all(r.global_counts is None for r in reports[1:])
        for name, total in root.global_counts.items():
            assert total == sum(r.local_counts[name] for r in reports)

    def test_reduced_counts_agree_across_partitions(self, plastic_config):
        totals = [_run_ranks(plastic_config, n)[0][1].global_counts
                  for n in (1, 2, 4)]
        assert totals[0] == totals[1] == totals[2]
        assert set(totals[0]) == {"sp1", "sp2", "bcpnn", "stdp"}

    def test_report_frame(self, plastic_config):
        _, _, runner = _build(plastic_config)
        runner.execute(plastic_config.simtime)
        frame = runner.report.to_frame()
        assert list(frame.columns) == ["local", "global"]
        assert frame.loc["sp1", "local"] == frame.loc["sp1", "global"]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    def test_divergence_fails_run_but_reduces(self, plastic_config):
        _, network, runner = _build(plastic_config)
        network.prneurons.v[0] = np.nan
        code = runner.execute(plastic_config.simtime)
        assert code == 1
        assert runner.report.result_code == 1
        assert runner.report.steps == 0
        assert runner.report.global_counts is not None
        assert runner.state is RunnerState.STOPPED

    def test_divergence_on_one_rank_stops_all(self, plastic_config):
        def work(comm, config):
            context, network, runner = _build(config, comm)
            if comm.rank == 1:
                network.poneurons.v[:] = np.nan
            code = runner.execute(config.simtime)
            return code, runner.report.steps

        results = ThreadGroup(2).run(work, plastic_config)
        assert [code for code, _ in results] == [1, 1]
        assert results[0][1] == results[1][1]

    @pytest.mark.parametrize("field,value,code", [
        ("ipre", 40, 4711), ("ipre", 1000, 4711), ("ipost", 12, 4712),
    ])
    def test_monitored_index_out_of_range(self, plastic_config, field, value, code):
        setattr(plastic_config, field, value)
        context = SimulationContext(seed=1, dt=plastic_config.dt)
        with pytest.raises(ValidationError) as info:
            build_network(plastic_config, context)
        assert info.value.exit_code == code
        assert context.groups == []
        assert context.clock.step == 0

    def test_exception_in_step_fails_every_rank(self, plastic_config):
        def work(comm, config):
            context, network, runner = _build(config, comm)
            if comm.rank == 0:
                def broken():
                    raise RuntimeError("update failed")
                network.stdp.update = broken
            code = runner.execute(config.simtime)
            return code, runner.report.steps, runner.state

        results = ThreadGroup(2).run(work, plastic_config)
        assert [code for code, _, _ in results] == [1, 1]
        assert results[0][1] == results[1][1] == 1
        assert all(state is RunnerState.STOPPED for _, _, state in results)
