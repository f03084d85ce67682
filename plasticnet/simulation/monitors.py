"""Pull-based monitors.

A monitor is a passive observer: the runner calls sample(clock) after each
step, and the monitor reads whatever it watches when its sampling period
is due. Samples are kept in memory (to_frame()) and, when a path is given,
streamed to a newline-delimited "time value" text file.
"""

import numpy as np
import pandas as pd

from plasticnet.utils import get_logger

LOG = get_logger("simulation.monitors")


class Monitor:
    """Base class: periodic sampling plus text export.

    Parameters
    ----------
    context : SimulationContext
    path : str or Path, optional
        Output file. If None, samples are only kept in memory.
    interval : float, optional
        Sampling period (s). Every step if None.
    """
    columns = ("time", "value")

    def __init__(self, context, path=None, interval=None):
        self.context = context
        self.path = path
        self.every = 1 if interval is None else max(1, context.clock.steps_for(interval))
        self.rows = []
        self._fptr = open(path, "w") if path is not None else None
        context.add_monitor(self)

    def sample(self, clock):
        if clock.step % self.every == 0:
            self.record(clock.time)

    def record(self, t):
        raise NotImplementedError

    def _emit(self, *row):
        self.rows.append(row)
        if self._fptr is not None:
            self._fptr.write(" ".join(_fmt(x) for x in row) + "\n")

    def close(self):
        if self._fptr is not None and not self._fptr.closed:
            self._fptr.close()
            LOG.debug("Closed %s (%d samples)", self.path, len(self.rows))

    def to_frame(self):
        return pd.DataFrame(self.rows, columns=list(self.columns))


def _fmt(x):
    if isinstance(x, (int, np.integer)):
        return str(int(x))
    return f"{x:.8g}"


class StateMonitor(Monitor):
    """Sample a scalar read by a callable (a trace, a bias, ...).

    Parameters
    ----------
    read : callable
        Returns the current value, no arguments.
    """

    def __init__(self, context, read, path=None, interval=None):
        super().__init__(context, path, interval)
        self.read = read

    def record(self, t):
        self._emit(t, self.read())


class VoltageMonitor(StateMonitor):
    """Membrane potential of one LIF neuron."""

    def __init__(self, context, group, i, path=None, interval=None):
        group.partition.to_local(i)
        super().__init__(context, lambda: group.voltage(i), path, interval)


class WeightMonitor(Monitor):
    """One per-edge quantity (w, pij, pi, pj) of one synapse i -> j.

    The edge must exist on this rank.
    """

    def __init__(self, context, connection, i, j, field="w", path=None,
                 interval=None):
        if connection.edge_value(i, j, field) is None:
            raise KeyError(f"{connection.name} has no local edge {i} -> {j}")
        super().__init__(context, path, interval)
        self.connection = connection
        self.i, self.j, self.field = i, j, field

    def record(self, t):
        self._emit(t, self.connection.edge_value(self.i, self.j, self.field))


class SpikeMonitor(Monitor):
    """Spike times of a group's local neurons: one "time id" row per spike."""
    columns = ("time", "neuron")

    def __init__(self, context, group, path=None):
        super().__init__(context, path, None)
        self.group = group

    def record(self, t):
        for i in self.group.spiking_ids():
            self._emit(t, int(i))

    def spike_times(self, i):
        """Spike times of global neuron i."""
        return np.array([t for t, n in self.rows if n == i])


class PopulationRateMonitor(Monitor):
    """Mean firing rate (Hz) of a group's local neurons per time bin.

    Each row is stamped with the end of its bin.
    """

    def __init__(self, context, group, binsize=0.1, path=None):
        super().__init__(context, path, None)
        self.group = group
        self.binsize = binsize
        self._bin_steps = max(1, context.clock.steps_for(binsize))
        self._count = 0
        self._steps = 0

    def record(self, t):
        self._count += int(np.count_nonzero(self.group.spikes))
        self._steps += 1
        if self._steps == self._bin_steps:
            n = max(1, self.group.partition.n_local)
            self._emit(t + self.context.dt, self._count / (n * self.binsize))
            self._count = 0
            self._steps = 0
