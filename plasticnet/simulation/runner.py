"""Lock-step distributed execution.

Each rank runs a DistributedRunner over its own SimulationContext. The
runner walks the state machine

    BUILT -> SYNCHRONIZED -> RUNNING -> REDUCING -> STOPPED

and talks to its peers only through explicit collectives: a barrier before
timing starts, one all-gather of spike flags per step, and a sum-reduction
of nonzero-synapse counts at the end.

Step order (fixed): all groups evolve; spikes are exchanged; every
connection delivers its spikes, then updates its plasticity; monitors
sample; the clock advances.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import numpy as np
import pandas as pd

from plasticnet.errors import (
    EXIT_OK, EXIT_RUN_FAILED, RunnerStateError, StepFailure,
)
from plasticnet.utils import get_logger

LOG = get_logger("simulation.runner")


class RunnerState(Enum):
    BUILT = "built"
    SYNCHRONIZED = "synchronized"
    RUNNING = "running"
    REDUCING = "reducing"
    STOPPED = "stopped"


@dataclass
class RunReport:
    """Outcome of a run on one rank.

    Attributes
    ----------
    result_code : int
        0 on success, 1 if the step loop failed.
    steps : int
        Steps completed.
    simtime : float
        Simulated time reached (s).
    wall_time : float
        Seconds from the start barrier to the end of the step loop.
    local_counts : dict
        Nonzero-synapse count per connection on this rank.
    global_counts : dict, optional
        Counts summed over ranks; only set on the coordinating rank.
    """
    result_code: int = EXIT_OK
    steps: int = 0
    simtime: float = 0.0
    wall_time: float = 0.0
    local_counts: Dict[str, int] = field(default_factory=dict)
    global_counts: Optional[Dict[str, int]] = None

    def to_frame(self):
        """Synapse counts as a DataFrame indexed by connection name."""
        frame = pd.DataFrame({"local": pd.Series(self.local_counts, dtype="int64")})
        if self.global_counts is not None:
            frame["global"] = pd.Series(self.global_counts, dtype="int64")
        frame.index.name = "connection"
        return frame


class DistributedRunner:
    """Drive one rank's share of the simulation.

    Parameters
    ----------
    context : SimulationContext
        Fully built context: every group and connection registered.
    root : int
        Rank that receives the reduced counts and reports timing.
    """

    def __init__(self, context, root=0):
        self.context = context
        self.comm = context.comm
        self.clock = context.clock
        self.root = root
        self.state = RunnerState.BUILT
        self.report = RunReport()
        self._t_start = None
        self._error = None
        LOG.info("Runner built: %d groups, %d connections, %d monitors",
                 len(context.groups), len(context.connections),
                 len(context.monitors))

    # --- State machine ---

    def _require(self, *states):
        if self.state not in states:
            allowed = ", ".join(s.name for s in states)
            raise RunnerStateError(
                f"Runner is {self.state.name}; expected one of: {allowed}")

    def synchronize(self):
        """Barrier across ranks, then start the wall clock."""
        self._require(RunnerState.BUILT)
        self.comm.barrier()
        self._t_start = time.perf_counter()
        self.state = RunnerState.SYNCHRONIZED

    def run(self, simtime):
        """Advance the clock by simtime in lock-step with every peer.

        May be called repeatedly. Returns False if a step failed; the
        failure is agreed on collectively so every rank stops at the same
        step.
        """
        self._require(RunnerState.SYNCHRONIZED, RunnerState.RUNNING)
        self.state = RunnerState.RUNNING
        n_steps = self.clock.steps_for(simtime)
        LOG.info("Running %d steps (%.3f s) from t=%.4f s",
                 n_steps, simtime, self.clock.time)
        try:
            for _ in range(n_steps):
                self.step()
            self._agree(self._local_failure())
        except StepFailure as exc:
            LOG.error("Simulation step failed at t=%.4f s: %s",
                      self.clock.time, exc)
            self.report.result_code = EXIT_RUN_FAILED
            return False
        finally:
            self.report.steps = self.clock.step
            self.report.simtime = self.clock.time
            self.report.wall_time = time.perf_counter() - self._t_start
        return True

    def step(self):
        """One lock-step update of every group, connection and monitor.

        An exception in a local phase is logged and reported to the peers
        at the next spike exchange, so every rank stops at the same step.
        """
        ctx = self.context

        # 1. Spike generation and integration
        self._attempt(lambda: [group.evolve() for group in ctx.groups])

        # 2. Spike exchange, carrying each rank's health flag
        failed = self._local_failure()
        gathered = self.comm.allgather(
            (failed, [group.spikes for group in ctx.groups]))
        failures = [rank for rank, (bad, _) in enumerate(gathered) if bad]
        if failures:
            raise StepFailure(f"step failed on rank(s) {failures}")
        for i, group in enumerate(ctx.groups):
            group.receive(np.concatenate([spikes[i] for _, spikes in gathered]))

        # 3. Delivery and plasticity
        def deliver():
            for connection in ctx.connections:
                connection.propagate()
                connection.update()
        self._attempt(deliver)

        # 4. Instrumentation
        self._attempt(lambda: [m.sample(self.clock) for m in ctx.monitors])

        self.clock.advance()

    def _attempt(self, phase):
        if self._error is not None:
            return
        try:
            phase()
        except Exception as exc:
            LOG.error("Exception at t=%.4f s: %r", self.clock.time, exc)
            self._error = exc

    def _local_failure(self):
        ctx = self.context
        return (self._error is not None
                or any(g.has_diverged() for g in ctx.groups)
                or any(c.has_diverged() for c in ctx.connections))

    def _agree(self, failed):
        flags = self.comm.allgather(failed)
        if any(flags):
            raise StepFailure(
                f"step failed on rank(s) {[r for r, f in enumerate(flags) if f]}")

    def reduce(self):
        """Sum each connection's nonzero-synapse count at the root rank."""
        self._require(RunnerState.RUNNING)
        self.state = RunnerState.REDUCING
        connections = self.context.connections
        local = np.array([c.count_nonzero() for c in connections], dtype=np.int64)
        self.report.local_counts = {
            c.name: int(n) for c, n in zip(connections, local)}
        total = self.comm.reduce_sum(local, root=self.root)
        if self.comm.rank == self.root:
            self.report.global_counts = {
                c.name: int(n) for c, n in zip(connections, total)}
            for name, n in self.report.global_counts.items():
                LOG.info("%s: %d nonzero synapses", name, n)
        return self.report.global_counts

    def stop(self):
        """Close monitors. Terminal: the run cannot be resumed."""
        self._require(RunnerState.BUILT, RunnerState.SYNCHRONIZED,
                      RunnerState.RUNNING, RunnerState.REDUCING)
        for monitor in self.context.monitors:
            monitor.close()
        self.state = RunnerState.STOPPED

    def execute(self, simtime):
        """Synchronize, run, reduce and stop; return the result code.

        A failed step still goes through the reduction, so partial counts
        are reported. Monitors are closed whatever happens.
        """
        try:
            self.synchronize()
            self.run(simtime)
            self.reduce()
        finally:
            if self.state is not RunnerState.STOPPED:
                self.stop()
        if self.comm.rank == self.root:
            LOG.info("Execution time = %.3f sec", self.report.wall_time)
        return self.report.result_code
