"""Per-rank simulation context.

The context owns everything a component would otherwise reach for through
globals: the clock, the master seed, the communicator, the output naming
scheme, and the registries of groups, connections and monitors that the
runner iterates over.
"""

from pathlib import Path

from plasticnet.simulation.comm import SerialCommunicator
from plasticnet.simulation.random import RandomStream


class SimulationClock:
    """Discrete step counter; t = step * dt.

    Only the runner advances it; everything else reads.
    """

    def __init__(self, dt):
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.dt = dt
        self.step = 0

    @property
    def time(self):
        return self.step * self.dt

    def advance(self):
        self.step += 1

    def steps_for(self, duration):
        """Number of whole steps covering a duration (s)."""
        return int(round(duration / self.dt))


class SimulationContext:
    """Everything one rank needs to build and run its share of a network.

    Parameters
    ----------
    seed : int
        Master seed.
    dt : float
        Time step (s).
    comm : Communicator, optional
        Defaults to a SerialCommunicator.
    output_dir : str or Path
        Directory for monitor and log files.
    prefix : str
        File name prefix for monitor and log files.
    """

    def __init__(self, seed=1, dt=1e-4, comm=None, output_dir=".",
                 prefix="plasticnet"):
        self.seed = int(seed)
        self.clock = SimulationClock(dt)
        self.comm = comm if comm is not None else SerialCommunicator()
        self.output_dir = Path(output_dir)
        self.prefix = prefix
        self.groups = []
        self.connections = []
        self.monitors = []

    @property
    def dt(self):
        return self.clock.dt

    @property
    def rank(self):
        return self.comm.rank

    @property
    def n_ranks(self):
        return self.comm.size

    def stream(self, *key):
        """A random stream keyed by name; identical on every rank."""
        return RandomStream(self.seed, *key)

    def fn(self, name):
        """Output file path for a named quantity on this rank."""
        return self.output_dir / f"{self.prefix}.{self.rank}.{name}"

    def add_group(self, group):
        names = {g.name for g in self.groups}
        if group.name in names:
            raise ValueError(f"Duplicate group name: {group.name}")
        self.groups.append(group)

    def add_connection(self, connection):
        names = {c.name for c in self.connections}
        if connection.name in names:
            raise ValueError(f"Duplicate connection name: {connection.name}")
        self.connections.append(connection)

    def add_monitor(self, monitor):
        self.monitors.append(monitor)
