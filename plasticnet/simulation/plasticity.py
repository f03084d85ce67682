"""Plastic sparse connections.

Two rules share the SparseConnection interface; the runner calls
propagate() and then update() once per connection per step:

    STDPConnection   pair-based additive STDP with hard weight bounds.
    BcpnnConnection  Bayesian Confidence Propagation: weights and biases
                     derived from running estimates of marginal and joint
                     activation probabilities.

Per-neuron presynaptic traces are kept for the whole source population on
every rank (the presynaptic spike vector is global after the exchange);
postsynaptic traces only for the rank's own targets.

References:
    Song S, Miller KD, Abbott LF (2000). Nat Neurosci 3(9):919-926.
    Tully PJ, Hennig MH, Lansner A (2014). Front Synaptic Neurosci 6:8.
"""

import numpy as np

from plasticnet.simulation.connectivity import SparseConnection
from plasticnet.simulation.traces import Trace
from plasticnet.utils import get_logger

LOG = get_logger("simulation.plasticity")


class STDPConnection(SparseConnection):
    """Pair-based additive STDP.

    A presynaptic spike reads the postsynaptic trace and depresses,
    a postsynaptic spike reads the presynaptic trace and potentiates:

        pre spike on i -> j:   w_ij += A * trace_post_j
        post spike on j:       w_ij += B * trace_pre_i

    with A = -asymmetry * (tau_post / tau_pre) * eta and B = eta. Weights
    are clamped to [wmin, wmax] after every update. Traces increment by 1
    per spike and decay with tau_pre / tau_post; the weight updates of a
    step read the traces as they were before that step's spikes.

    The alternative assignment, w += A * trace_pre on a postsynaptic
    spike and w += B * trace_post on a presynaptic spike, would make
    causal pre-then-post pairs depress. It is deliberately not used:
    pre-then-post potentiates, post-then-pre depresses.

    Parameters
    ----------
    source, target, weight, sparseness, context, name
        As for SparseConnection.
    eta : float
        Learning rate.
    tau_pre, tau_post : float
        Trace time constants (s).
    wmin, wmax : float
        Hard weight bounds.
    asymmetry : float
        Ratio k of depression to potentiation area.
    """
    kind = "stdp"

    def __init__(self, source, target, weight, sparseness, context,
                 eta=1e-3, tau_pre=20e-3, tau_post=20e-3, wmin=0.0,
                 wmax=0.1, asymmetry=1.05, name=None):
        if wmin > wmax:
            raise ValueError(f"wmin={wmin} exceeds wmax={wmax}")
        super().__init__(source, target, weight, sparseness, context, name)
        self.eta = eta
        self.wmin = wmin
        self.wmax = wmax
        self.A = -asymmetry * (tau_post / tau_pre) * eta
        self.B = eta
        self.trace_pre = Trace(source.size, tau_pre, context.dt)
        self.trace_post = Trace(target.partition.n_local, tau_post, context.dt)
        np.clip(self.weights, wmin, wmax, out=self.weights)

        LOG.info("%s: A=%.3g, B=%.3g, bounds [%g, %g]",
                 self.name, self.A, self.B, wmin, wmax)

    def update(self):
        pre = self.source.global_spikes
        post = self.target.spikes

        # 1. Presynaptic spikes: w += A * trace_post
        pre_edges = pre[self.src]
        if np.any(pre_edges):
            self.weights[pre_edges] += (
                self.A * self.trace_post.values[self._tgt_local[pre_edges]])
            np.clip(self.weights, self.wmin, self.wmax, out=self.weights)

        # 2. Postsynaptic spikes: w += B * trace_pre
        post_edges = post[self._tgt_local]
        if np.any(post_edges):
            self.weights[post_edges] += (
                self.B * self.trace_pre.values[self.src[post_edges]])
            np.clip(self.weights, self.wmin, self.wmax, out=self.weights)

        # 3. Traces
        self.trace_pre.update(pre)
        self.trace_post.update(post)

    def mean_weight(self):
        return float(np.mean(self.weights)) if self.n_synapses else float("nan")


class BcpnnConnection(SparseConnection):
    """Trace-based BCPNN.

    State, updated every step:

        zi <- zi * (1 - dt/tau_zi) + counted presynaptic spikes
        zj <- zj * (1 - dt/tau_zj) + counted postsynaptic spikes
        pi <- pi + dt/tau_p * (zi - pi)
        pj <- pj + dt/tau_p * (zj - pj)
        pij <- pij + dt/tau_p * (zi * zj - pij)      (per edge)

    Derived read-outs:

        w_ij   = wgain * ln(pij / (pi * pj + eps))
        bias_j = bgain * ln(pj + eps)

    A spike is counted only if its neuron has not had a counted spike in
    the last refractory_period; the gate ignores spikes inside that window.
    Gains are applied at read time, so changing them keeps the accumulated
    probabilities.

    Parameters
    ----------
    source, target, sparseness, context, name
        As for SparseConnection.
    tau_zi, tau_zj, tau_p : float
        Time constants (s) of the z-traces and probability traces.
    refractory_period : float
        Gating window (s) for trace increments.
    wgain, bgain : float
        Read-out gains.
    p_init : float
        Initial pi, pj; pij starts at p_init**2 (so w starts near 0).
    eps : float
        Guard against log(0) and division by zero.
    """
    kind = "bcpnn"

    def __init__(self, source, target, sparseness, context, tau_zi=25e-3,
                 tau_zj=10e-3, tau_p=0.2, refractory_period=5e-3, wgain=1.0,
                 bgain=1.0, p_init=0.01, eps=1e-6, name=None):
        super().__init__(source, target, 0.0, sparseness, context, name)
        dt = context.dt
        if tau_p <= dt:
            raise ValueError(f"tau_p={tau_p} must exceed dt={dt}")
        if p_init <= 0:
            raise ValueError(f"p_init must be positive: {p_init}")
        self.tau_p = tau_p
        self.eps = eps
        self._wgain = wgain
        self._bgain = bgain
        self._k_p = dt / tau_p
        self._gate_steps = int(round(refractory_period / dt))

        n_local = target.partition.n_local
        self.zi = Trace(source.size, tau_zi, dt)
        self.zj = Trace(n_local, tau_zj, dt)
        self.pi = np.full(source.size, p_init, dtype=np.float64)
        self.pj = np.full(n_local, p_init, dtype=np.float64)
        self.pij = np.full(self.n_synapses, p_init ** 2, dtype=np.float64)
        self._gate_pre = np.zeros(source.size, dtype=np.int64)
        self._gate_post = np.zeros(n_local, dtype=np.int64)
        self._derive_weights()

        LOG.info("%s: tau_zi=%.1f ms, tau_zj=%.1f ms, tau_p=%.2f s, "
                 "wgain=%g, bgain=%g", self.name, tau_zi * 1e3, tau_zj * 1e3,
                 tau_p, wgain, bgain)

    # --- Gains ---

    @property
    def wgain(self):
        return self._wgain

    def set_wgain(self, value):
        self._wgain = value
        self._derive_weights()

    @property
    def bgain(self):
        return self._bgain

    def set_bgain(self, value):
        self._bgain = value

    # --- Dynamics ---

    def _gate(self, countdown, spikes):
        """Counted spikes: those outside their neuron's gating window."""
        open_ = countdown <= 0
        counted = spikes & open_
        countdown[~open_] -= 1
        countdown[counted] = self._gate_steps
        return counted

    def update(self):
        pre = self._gate(self._gate_pre, self.source.global_spikes)
        post = self._gate(self._gate_post, self.target.spikes)

        self.zi.update(pre)
        self.zj.update(post)

        zi, zj = self.zi.values, self.zj.values
        self.pi += self._k_p * (zi - self.pi)
        self.pj += self._k_p * (zj - self.pj)
        self.pij += self._k_p * (zi[self.src] * zj[self._tgt_local] - self.pij)

        self._derive_weights()

    def _derive_weights(self):
        denom = self.pi[self.src] * self.pj[self._tgt_local] + self.eps
        self.weights = self._wgain * np.log(self.pij / denom)

    # --- Read-outs ---

    @property
    def bias(self):
        """Postsynaptic biases of the local targets."""
        return self._bgain * np.log(self.pj + self.eps)

    def get_bias(self, j):
        return float(self.bias[self.target.partition.to_local(j)])

    def edge_value(self, i, j, field="w"):
        """Per-edge quantity for monitors: w, pij, pi or pj."""
        k = self.edge_index(i, j)
        if k is None:
            return None
        if field == "w":
            return float(self.weights[k])
        if field == "pij":
            return float(self.pij[k])
        if field == "pi":
            return float(self.pi[i])
        if field == "pj":
            return float(self.pj[self._tgt_local[k]])
        raise KeyError(f"bcpnn connection has no field {field!r}")

    def has_diverged(self):
        return not (np.all(np.isfinite(self.weights))
                    and np.all(np.isfinite(self.pij)))
