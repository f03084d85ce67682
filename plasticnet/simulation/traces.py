"""Exponentially decaying eligibility traces.

A trace is decayed every step by the forward-Euler factor (1 - dt/tau)
rather than the exact exp(-dt/tau). The discretisation error is O(dt);
reference outputs are produced with the Euler factor, so keep it.
"""

import numpy as np


class Trace:
    """A vector of traces with a common time constant.

    Parameters
    ----------
    size : int
        Number of traced neurons (or edges).
    tau : float
        Decay time constant (s). Must exceed dt.
    dt : float
        Time step (s).
    increment : float
        Amount added on each counted spike.
    """

    def __init__(self, size, tau, dt, increment=1.0):
        if tau <= dt:
            raise ValueError(f"Trace time constant {tau} must exceed dt={dt}")
        self.tau = tau
        self.dt = dt
        self.increment = increment
        self.decay = 1.0 - dt / tau
        self.values = np.zeros(size, dtype=np.float64)

    def __len__(self):
        return len(self.values)

    def evolve(self):
        """Decay one time step."""
        self.values *= self.decay

    def add(self, spiked):
        """Increment the traces selected by a Boolean mask or index array."""
        self.values[spiked] += self.increment

    def update(self, spiked):
        """Decay, then increment for this step's counted spikes."""
        self.evolve()
        self.add(spiked)

    def get(self, i):
        return float(self.values[i])

    def reset(self):
        self.values[:] = 0.0
