"""Neuron populations: Poisson inputs and leaky integrate-and-fire groups.

Every population is split into contiguous blocks, one per rank. A rank keeps
state only for its own block and computes its block's spikes; the runner
then gathers the global spike vector so that connections on any rank can
read presynaptic activity.
"""

import numpy as np

from plasticnet.errors import check_index
from plasticnet.utils import get_logger

LOG = get_logger("simulation.groups")


class Partition:
    """The contiguous block [start, stop) of a population owned by one rank.

    Parameters
    ----------
    size : int
        Global population size.
    rank : int
        Owning rank.
    n_ranks : int
        Number of cooperating ranks.
    """

    def __init__(self, size, rank=0, n_ranks=1):
        self.size = size
        self.rank = rank
        self.n_ranks = n_ranks
        self.start = size * rank // n_ranks
        self.stop = size * (rank + 1) // n_ranks

    @property
    def n_local(self):
        return self.stop - self.start

    @property
    def global_ids(self):
        return np.arange(self.start, self.stop)

    def owns(self, i):
        return self.start <= i < self.stop

    def to_local(self, i):
        if not self.owns(i):
            raise IndexError(f"Neuron {i} not owned by rank {self.rank} "
                             f"[{self.start}, {self.stop})")
        return i - self.start

    def __repr__(self):
        return (f"Partition(size={self.size}, rank={self.rank}, "
                f"[{self.start}, {self.stop}))")


class SpikingGroup:
    """Base class of a partitioned population.

    Attributes
    ----------
    spikes : np.ndarray
        Boolean spike flags of the local block for the current step.
    global_spikes : np.ndarray
        Spike flags of the whole population, set by the runner after the
        exchange.
    """

    def __init__(self, size, context, name):
        if size < 1:
            raise ValueError(f"Group {name} needs at least one neuron")
        self.name = name
        self.size = size
        self.context = context
        self.partition = Partition(size, context.rank, context.n_ranks)
        self.spikes = np.zeros(self.partition.n_local, dtype=bool)
        self.global_spikes = np.zeros(size, dtype=bool)
        context.add_group(self)

    def evolve(self):
        """Advance one step and set self.spikes."""
        raise NotImplementedError

    def receive(self, global_spikes):
        """Install the gathered global spike vector."""
        self.global_spikes = global_spikes

    def spiking_ids(self):
        """Global ids of the local neurons that spiked this step."""
        return self.partition.start + np.flatnonzero(self.spikes)

    @property
    def refractory(self):
        """Local neurons currently unable to spike."""
        return np.zeros(self.partition.n_local, dtype=bool)

    def check_index(self, i, label, exit_code):
        """Validate a neuron index selected for monitoring."""
        check_index(i, self.size, label, exit_code)

    def has_diverged(self):
        return False


class PoissonGroup(SpikingGroup):
    """Independent Poisson spike sources at a common rate.

    Each neuron spikes in a step with probability rate * dt. The draws come
    from a stream every rank reproduces in full, and each rank keeps its own
    slice, so spike trains do not depend on the number of ranks.

    Parameters
    ----------
    size : int
        Number of sources.
    rate : float
        Firing rate (Hz).
    context : SimulationContext
    name : str
    """

    def __init__(self, size, rate, context, name="poisson"):
        super().__init__(size, context, name)
        self.rate = rate
        self._stream = context.stream("poisson", name)
        LOG.info("PoissonGroup %s: %d sources at %.1f Hz (local %d)",
                 name, size, rate, self.partition.n_local)

    @property
    def rate(self):
        return self._rate

    @rate.setter
    def rate(self, value):
        if value < 0 or value * self.context.dt > 1.0:
            raise ValueError(f"Poisson rate {value} Hz invalid at dt={self.context.dt}")
        self._rate = value

    def evolve(self):
        p_spike = self._rate * self.context.dt
        draws = self._stream.random(self.size)
        self.spikes = draws[self.partition.start:self.partition.stop] < p_spike


class IntegrateAndFireGroup(SpikingGroup):
    """Leaky integrate-and-fire neurons with a refractory period.

    Euler integration of

        dv/dt = -(v - v_rest) / tau_mem + I_syn,    I_syn = g / tau_mem

    where g is an additive synaptic accumulator that connections increment
    by the weight of each delivered spike, and that decays with tau_syn.
    On v >= v_thresh the neuron spikes, v is reset to v_reset, and the
    neuron neither integrates nor spikes for refractory_period.

    Parameters
    ----------
    size : int
        Number of neurons.
    context : SimulationContext
    name : str
    v_rest, v_thresh, v_reset : float
        Resting, threshold and reset potentials (V).
    tau_mem, tau_syn : float
        Membrane and synaptic time constants (s).
    refractory_period : float
        Absolute refractory period (s).
    """

    def __init__(self, size, context, name="lif", v_rest=-60e-3,
                 v_thresh=-50e-3, v_reset=-60e-3, tau_mem=20e-3,
                 tau_syn=5e-3, refractory_period=5e-3):
        super().__init__(size, context, name)
        dt = context.dt
        if tau_mem <= dt or tau_syn <= dt:
            raise ValueError(f"Time constants must exceed dt={dt}")
        self.v_rest = v_rest
        self.v_thresh = v_thresh
        self.v_reset = v_reset
        self.tau_mem = tau_mem
        self.tau_syn = tau_syn
        self.refractory_period = refractory_period

        # --- Integration constants ---
        self._dt_over_tau_m = dt / tau_mem
        self._decay_g = 1.0 - dt / tau_syn
        self._ref_steps = int(round(refractory_period / dt))

        # --- State arrays (local block) ---
        n = self.partition.n_local
        self.v = np.full(n, v_rest, dtype=np.float64)
        self.g = np.zeros(n, dtype=np.float64)
        self._ref = np.zeros(n, dtype=np.int64)

        LOG.info("IntegrateAndFireGroup %s: %d neurons (local %d), "
                 "tau_mem=%.1f ms, refractory=%.1f ms",
                 name, size, n, tau_mem * 1e3, refractory_period * 1e3)

    def evolve(self):
        # 1. Refractory countdown
        refractory = self._ref > 0
        self._ref[refractory] -= 1
        active = ~refractory

        # 2. Voltage update (Euler)
        dv = self._dt_over_tau_m * (-(self.v - self.v_rest) + self.g)
        self.v[active] += dv[active]

        # 3. Spike detection and reset
        spiked = active & (self.v >= self.v_thresh)
        self.v[spiked] = self.v_reset
        self._ref[spiked] = self._ref_steps
        self.spikes = spiked

        # 4. Synaptic decay
        self.g *= self._decay_g

    def add_input(self, local_targets, weights):
        """Accumulate delivered spikes into g (repeated targets add up)."""
        np.add.at(self.g, local_targets, weights)

    @property
    def refractory(self):
        return self._ref > 0

    def refractory_remaining(self, i):
        """Remaining refractory time (s) of global neuron i."""
        return self._ref[self.partition.to_local(i)] * self.context.dt

    def voltage(self, i):
        """Membrane potential of global neuron i (must be local)."""
        return float(self.v[self.partition.to_local(i)])

    def has_diverged(self):
        return not (np.all(np.isfinite(self.v)) and np.all(np.isfinite(self.g)))
