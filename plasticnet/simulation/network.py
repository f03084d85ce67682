"""Assemble the Poisson -> LIF -> LIF plasticity network from a configuration.

Topology:

    poisson   --static(winit)-->  prneurons
    prneurons --static(winit2)--> poneurons
    prneurons --bcpnn-->          poneurons   (with_bcpnn)
    prneurons --stdp(winit2)-->   poneurons   (with_stdp)

All connections share the configured sparseness. Monitors watch neuron
ipre of prneurons and ipost of poneurons; each is created on the rank
that owns what it watches.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from plasticnet.errors import (
    EXIT_IPOST_OUT_OF_RANGE, EXIT_IPRE_OUT_OF_RANGE, check_index,
)
from plasticnet.simulation.connectivity import SparseConnection
from plasticnet.simulation.groups import IntegrateAndFireGroup, PoissonGroup
from plasticnet.simulation.monitors import (
    PopulationRateMonitor, SpikeMonitor, StateMonitor, VoltageMonitor,
    WeightMonitor,
)
from plasticnet.simulation.plasticity import BcpnnConnection, STDPConnection
from plasticnet.utils import get_logger

LOG = get_logger("simulation.network")


@dataclass
class Network:
    """The populations, connections and monitors of one rank."""
    poisson: PoissonGroup
    prneurons: IntegrateAndFireGroup
    poneurons: IntegrateAndFireGroup
    connections: Dict[str, SparseConnection]
    bcpnn: Optional[BcpnnConnection] = None
    stdp: Optional[STDPConnection] = None
    monitors: Dict[str, object] = field(default_factory=dict)

    def summary(self):
        lines = [
            f"Network: {self.poisson.size} inputs, {self.prneurons.size} pre, "
            f"{self.poneurons.size} post",
        ]
        lines.extend(c.summary() for c in self.connections.values())
        lines.append(f"  monitors: {sorted(self.monitors)}")
        return "\n".join(lines)


def build_network(config, context):
    """Build this rank's share of the network.

    Parameters
    ----------
    config : SimulationConfig
        A validated configuration.
    context : SimulationContext

    Returns
    -------
    Network

    Raises
    ------
    ValidationError
        If ipre or ipost is outside its population (exit codes 4711, 4712).
        Raised before any group is created.
    """
    # Monitored indices are checked before anything is built
    _check_monitored(config)

    sparseness = config.effective_sparseness
    poisson = PoissonGroup(config.nbinputs, config.kappa, context, name="poisson")
    prneurons = IntegrateAndFireGroup(
        config.nbinputs, context, name="prneurons",
        refractory_period=config.refractory_period)
    poneurons = IntegrateAndFireGroup(
        config.size, context, name="poneurons",
        refractory_period=config.refractory_period)

    connections = {}
    sp1 = SparseConnection(poisson, prneurons, config.winit, sparseness,
                           context, name="sp1")
    sp2 = SparseConnection(prneurons, poneurons, config.winit2, sparseness,
                           context, name="sp2")
    connections[sp1.name] = sp1
    connections[sp2.name] = sp2

    bcpnn = None
    if config.with_bcpnn:
        bcpnn = BcpnnConnection(
            prneurons, poneurons, sparseness, context,
            tau_zi=config.tau_zi, tau_zj=config.tau_z_po, tau_p=config.tau_p,
            refractory_period=config.refractory_period,
            wgain=config.wgain, bgain=config.bgain, name="bcpnn")
        connections[bcpnn.name] = bcpnn

    stdp = None
    if config.with_stdp:
        stdp = STDPConnection(
            prneurons, poneurons, config.winit2, sparseness, context,
            eta=config.eta, tau_pre=config.tau_pre, tau_post=config.tau_post,
            wmin=config.wmin, wmax=config.wmax, name="stdp")
        connections[stdp.name] = stdp

    network = Network(poisson=poisson, prneurons=prneurons,
                      poneurons=poneurons, connections=connections,
                      bcpnn=bcpnn, stdp=stdp)
    if not config.nomon:
        network.monitors = attach_monitors(network, config, context)

    LOG.info(network.summary())
    return network


def _check_monitored(config):
    check_index(config.ipre, config.nbinputs, "ipre", EXIT_IPRE_OUT_OF_RANGE)
    check_index(config.ipost, config.size, "ipost", EXIT_IPOST_OUT_OF_RANGE)


def attach_monitors(network, config, context):
    """Create the standard monitors that this rank can serve."""
    ipre, ipost = config.ipre, config.ipost
    pre_local = network.prneurons.partition.owns(ipre)
    post_local = network.poneurons.partition.owns(ipost)
    fn = context.fn
    monitors = {}

    monitors["prspikes"] = SpikeMonitor(context, network.prneurons, fn("prspikes"))
    monitors["pospikes"] = SpikeMonitor(context, network.poneurons, fn("pospikes"))
    monitors["prrate"] = PopulationRateMonitor(
        context, network.prneurons, binsize=0.1, path=fn("prrate"))
    monitors["porate"] = PopulationRateMonitor(
        context, network.poneurons, binsize=0.1, path=fn("porate"))

    if pre_local:
        monitors["vmem_pr"] = VoltageMonitor(
            context, network.prneurons, ipre, fn("vmem_pr"))
    if post_local:
        monitors["vmem_po"] = VoltageMonitor(
            context, network.poneurons, ipost, fn("vmem_po"))

    bcpnn = network.bcpnn
    if bcpnn is not None:
        if pre_local:
            monitors["zi"] = StateMonitor(
                context, lambda: bcpnn.zi.get(ipre), fn("zi"))
        if post_local:
            jl = network.poneurons.partition.to_local(ipost)
            monitors["zj"] = StateMonitor(
                context, lambda: bcpnn.zj.get(jl), fn("zj"))
            monitors["pj"] = StateMonitor(
                context, lambda: float(bcpnn.pj[jl]), fn("pj"))
            monitors["bj"] = StateMonitor(
                context, lambda: bcpnn.get_bias(ipost), fn("bj"))
            if bcpnn.edge_index(ipre, ipost) is not None:
                for quantity, name in (("w", "wij"), ("pij", "pij"), ("pi", "pi")):
                    monitors[name] = WeightMonitor(
                        context, bcpnn, ipre, ipost, quantity, fn(name),
                        interval=config.sampling_interval)
            else:
                LOG.warning("No BCPNN synapse %d -> %d; weight monitors skipped",
                            ipre, ipost)

    stdp = network.stdp
    if stdp is not None and post_local:
        if stdp.edge_index(ipre, ipost) is not None:
            monitors["stdp_wij"] = WeightMonitor(
                context, stdp, ipre, ipost, "w", fn("stdp_wij"),
                interval=config.sampling_interval)
        else:
            LOG.warning("No STDP synapse %d -> %d; weight monitor skipped",
                        ipre, ipost)

    return monitors
