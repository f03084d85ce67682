"""Run configuration for the Poisson → LIF → LIF plasticity simulation.

A configuration can be loaded from YAML, built from a mapping, or
constructed directly. Defaults follow the reference BCPNN run, except that
tau_z_pr is left unset so the BCPNN presynaptic trace follows tau_pre.
All times are in seconds, rates in Hz.
"""

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from plasticnet.errors import ConfigurationError, EXIT_NPOSTSYN_TOO_LARGE
from plasticnet.utils import get_logger

LOG = get_logger("config")


@dataclass
class SimulationConfig:
    """Parameters of a simulation run.

    Attributes
    ----------
    seed : int
        Master seed for every random stream.
    simtime : float
        Total simulated duration (s).
    dt : float
        Integration time step (s).
    kappa : float
        Poisson input rate (Hz).
    nbinputs, size : int
        Sizes of the input (and presynaptic LIF) and postsynaptic populations.
    sparseness : float
        Connection density. Overridden by npostsyn / nbinputs when npostsyn
        is given.
    npostsyn : int, optional
        Expected number of inputs per postsynaptic neuron.
    winit, winit2 : float
        Initial weights of the input and the presynaptic → postsynaptic
        static connections.
    with_stdp, with_bcpnn : bool
        Add an STDP and/or a BCPNN presynaptic → postsynaptic connection.
    tau_pre, tau_post, eta, wmin, wmax : float
        STDP window time constants, learning rate and weight bounds.
    tau_z_pr : float, optional
        BCPNN presynaptic z-trace time constant; tau_pre when unset.
        The reference run sets it to 25 ms.
    tau_z_po, tau_p : float
        BCPNN postsynaptic z-trace and probability time constants.
    wgain, bgain : float
        BCPNN read-out gains for weights and biases.
    refractory_period : float
        Refractory period of the LIF neurons and of BCPNN trace gating.
    ipre, ipost : int
        Neurons selected for trace, voltage and weight monitoring.
    dir, prefix : str
        Output directory and file prefix for monitors.
    nomon : bool
        Disable all monitors.
    sampling_interval : float
        Sampling period of weight monitors (s).
    """
    seed: int = 1
    simtime: float = 10.0
    dt: float = 1e-4
    kappa: float = 20.0
    nbinputs: int = 100
    size: int = 25
    sparseness: float = 0.6
    npostsyn: Optional[int] = None
    winit: float = 0.04
    winit2: float = 0.04
    with_stdp: bool = False
    with_bcpnn: bool = True
    tau_pre: float = 20e-3
    tau_post: float = 20e-3
    eta: float = 1e-3
    wmin: float = 0.0
    wmax: float = 0.1
    tau_z_pr: Optional[float] = None
    tau_z_po: float = 10e-3
    tau_p: float = 0.2
    wgain: float = 1e-4
    bgain: float = 1e-4
    refractory_period: float = 5e-3
    ipre: int = 99
    ipost: int = 17
    dir: str = "."
    prefix: str = "sim_bcpnn"
    nomon: bool = False
    sampling_interval: float = 0.01

    # Fields where an explicit None is meaningful rather than "use default"
    _nullable = ("npostsyn", "tau_z_pr")

    @classmethod
    def from_mapping(cls, mapping):
        """Build a configuration from a mapping, rejecting unknown keys.

        None means "use the default", except for the nullable fields
        (npostsyn, tau_z_pr), where it is kept as an explicit unset.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {unknown}")
        return cls(**{k: v for k, v in mapping.items()
                      if v is not None or k in cls._nullable})

    @classmethod
    def from_yaml(cls, path):
        """Load a configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        with open(path, "r") as fptr:
            mapping = yaml.load(fptr, Loader=yaml.SafeLoader) or {}
        if not isinstance(mapping, dict):
            raise ConfigurationError(f"Expected a mapping in {path}")
        LOG.info("Loaded configuration from %s", path)
        return cls.from_mapping(mapping)

    def to_dict(self):
        return asdict(self)

    def to_yaml(self, path):
        """Write the configuration to a YAML file."""
        with open(path, "w") as fptr:
            yaml.dump(self.to_dict(), fptr, allow_unicode=True)

    @property
    def effective_sparseness(self):
        """Connection density: npostsyn / nbinputs if given, else sparseness."""
        if self.npostsyn is not None:
            return self.npostsyn / self.nbinputs
        return self.sparseness

    @property
    def tau_zi(self):
        """BCPNN presynaptic z-trace time constant."""
        return self.tau_z_pr if self.tau_z_pr is not None else self.tau_pre

    def validate(self):
        """Check parameter ranges and consistency.

        Raises
        ------
        ConfigurationError
            With exit code 4713 when npostsyn exceeds nbinputs, and the
            generic configuration exit code otherwise.
        """
        if self.nbinputs < 1 or self.size < 1:
            raise ConfigurationError(
                f"Population sizes must be positive: nbinputs={self.nbinputs}, "
                f"size={self.size}")
        if self.npostsyn is not None:
            if self.npostsyn > self.nbinputs:
                raise ConfigurationError(
                    f"npostsyn={self.npostsyn} exceeds nbinputs={self.nbinputs}",
                    exit_code=EXIT_NPOSTSYN_TOO_LARGE)
            if self.npostsyn < 1:
                raise ConfigurationError(f"npostsyn must be positive: {self.npostsyn}")
        if not 0.0 < self.effective_sparseness <= 1.0:
            raise ConfigurationError(
                f"Sparseness must lie in (0, 1]: {self.effective_sparseness}")
        if self.dt <= 0 or self.simtime < 0:
            raise ConfigurationError(
                f"Need dt > 0 and simtime >= 0: dt={self.dt}, simtime={self.simtime}")
        if self.kappa < 0 or self.kappa * self.dt > 1.0:
            raise ConfigurationError(
                f"Poisson rate must satisfy 0 <= kappa*dt <= 1: kappa={self.kappa}")
        taus = {"tau_pre": self.tau_pre, "tau_post": self.tau_post,
                "tau_zi": self.tau_zi, "tau_z_po": self.tau_z_po,
                "tau_p": self.tau_p}
        for name, tau in taus.items():
            # Euler decay factor (1 - dt/tau) must stay positive.
            if tau <= self.dt:
                raise ConfigurationError(f"{name}={tau} must exceed dt={self.dt}")
        if self.wmin > self.wmax:
            raise ConfigurationError(f"wmin={self.wmin} exceeds wmax={self.wmax}")
        if self.refractory_period < 0:
            raise ConfigurationError(
                f"refractory_period must be non-negative: {self.refractory_period}")
        if self.sampling_interval <= 0:
            raise ConfigurationError(
                f"sampling_interval must be positive: {self.sampling_interval}")
        return self
