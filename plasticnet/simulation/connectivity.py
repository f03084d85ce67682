"""Random sparse bipartite connectivity and static connections.

Each of the n_src * n_tgt directed pairs is kept with probability p.
The Bernoulli draws for target column j come from their own stream,
keyed by (master seed, connection name, j). A rank only generates the
columns of the targets it owns, and the union over ranks is the same edge
set whatever the number of ranks.

Edges are stored in parallel arrays (src, tgt, weights), sorted by target
and then source; a rank holds exactly the edges onto its own targets.
"""

import numpy as np

from plasticnet.simulation.random import RandomStream
from plasticnet.utils import get_logger

LOG = get_logger("simulation.connectivity")


class SparseConnectivityBuilder:
    """Partition-invariant Bernoulli sampler of a bipartite edge set.

    Parameters
    ----------
    n_src, n_tgt : int
        Source and target population sizes.
    density : float
        Connection probability p in (0, 1].
    seed : int
        Master seed.
    tag : str
        Connection name; distinct connections get independent edge sets.
    """

    def __init__(self, n_src, n_tgt, density, seed, tag):
        if not 0.0 < density <= 1.0:
            raise ValueError(f"Density must lie in (0, 1]: {density}")
        self.n_src = n_src
        self.n_tgt = n_tgt
        self.density = density
        self.seed = seed
        self.tag = tag

    @property
    def expected_count(self):
        return self.density * self.n_src * self.n_tgt

    def column(self, j):
        """Sorted source ids connected to target j."""
        stream = RandomStream(self.seed, "connectivity", self.tag, j)
        return np.flatnonzero(stream.bernoulli(self.n_src, self.density))

    def build(self, targets=None):
        """Generate the edges onto a range of targets.

        Parameters
        ----------
        targets : Partition or range, optional
            Target ids to generate. Defaults to all targets.

        Returns
        -------
        src, tgt : np.ndarray
            Global source and target ids (int64), sorted by (tgt, src).
        """
        if targets is None:
            ids = range(self.n_tgt)
        elif hasattr(targets, "start") and hasattr(targets, "stop"):
            ids = range(targets.start, targets.stop)
        else:
            ids = targets
        columns = [self.column(j) for j in ids]
        if not columns:
            empty = np.array([], dtype=np.int64)
            return empty, empty.copy()
        src = np.concatenate(columns).astype(np.int64)
        tgt = np.concatenate([np.full(len(c), j, dtype=np.int64)
                              for j, c in zip(ids, columns)])
        return src, tgt


class SparseConnection:
    """Static sparse connection: weights never change after construction.

    Parameters
    ----------
    source : SpikingGroup
        Presynaptic population.
    target : IntegrateAndFireGroup
        Postsynaptic population (receives input through add_input()).
    weight : float
        Initial weight of every edge.
    sparseness : float
        Connection probability.
    context : SimulationContext
    name : str, optional
        Unique connection name; keys the connectivity stream.
    """
    kind = "static"

    def __init__(self, source, target, weight, sparseness, context, name=None):
        self.source = source
        self.target = target
        self.context = context
        self.name = name or f"{source.name}->{target.name}:{self.kind}"
        self.sparseness = sparseness

        builder = SparseConnectivityBuilder(source.size, target.size,
                                            sparseness, context.seed, self.name)
        self.src, self.tgt = builder.build(target.partition)
        self._tgt_local = self.tgt - target.partition.start
        self.weights = np.full(len(self.src), weight, dtype=np.float64)

        # Start of each local target's edge block, for edge lookup.
        self._row_start = np.searchsorted(
            self._tgt_local, np.arange(target.partition.n_local + 1))

        context.add_connection(self)
        LOG.info("%s: %d local synapses (expected %.0f globally), w0=%g",
                 self.name, self.n_synapses, builder.expected_count, weight)

    @property
    def n_synapses(self):
        """Number of local edges."""
        return len(self.src)

    def count_nonzero(self):
        """Number of local edges with a nonzero weight."""
        return int(np.count_nonzero(self.transmitted_weights()))

    def transmitted_weights(self):
        """Weights used for spike delivery."""
        return self.weights

    def propagate(self):
        """Deliver this step's presynaptic spikes to local targets."""
        firing = self.source.global_spikes[self.src]
        if np.any(firing):
            self.target.add_input(self._tgt_local[firing],
                                  self.transmitted_weights()[firing])

    def update(self):
        """Plasticity hook; static connections do nothing."""

    def edge_index(self, i, j):
        """Local index of edge i -> j, or None if absent or not local."""
        if not self.target.partition.owns(j):
            return None
        jl = self.target.partition.to_local(j)
        lo, hi = self._row_start[jl], self._row_start[jl + 1]
        k = lo + np.searchsorted(self.src[lo:hi], i)
        if k < hi and self.src[k] == i:
            return int(k)
        return None

    def get_weight(self, i, j):
        k = self.edge_index(i, j)
        return None if k is None else float(self.transmitted_weights()[k])

    def edge_value(self, i, j, field="w"):
        """Monitored per-edge quantity; static connections only expose w."""
        if field != "w":
            raise KeyError(f"{self.kind} connection has no field {field!r}")
        return self.get_weight(i, j)

    def has_diverged(self):
        return not np.all(np.isfinite(self.transmitted_weights()))

    def summary(self):
        w = self.transmitted_weights()
        lines = [
            f"{self.name}: {self.n_synapses:,} local synapses",
            f"  kind: {self.kind}",
            f"  weight range: [{w.min():.4g}, {w.max():.4g}]" if len(w) > 0
            else "  weight range: (no synapses)",
        ]
        return "\n".join(lines)
