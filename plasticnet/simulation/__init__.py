"""simulation: partitioned spiking-network simulation.

Pure-numpy implementation of Poisson and leaky integrate-and-fire
populations, random sparse connectivity, pair-based STDP and trace-based
BCPNN plasticity, driven in lock-step across cooperating ranks.
"""

from .random import RandomStream
from .traces import Trace
from .context import SimulationClock, SimulationContext
from .comm import (
    Communicator,
    SerialCommunicator,
    ThreadGroup,
    ThreadCommunicator,
    MPICommunicator,
)
from .groups import (
    Partition,
    SpikingGroup,
    PoissonGroup,
    IntegrateAndFireGroup,
)
from .connectivity import SparseConnectivityBuilder, SparseConnection
from .plasticity import STDPConnection, BcpnnConnection
from .monitors import (
    Monitor,
    StateMonitor,
    VoltageMonitor,
    WeightMonitor,
    SpikeMonitor,
    PopulationRateMonitor,
)
from .runner import DistributedRunner, RunnerState, RunReport
from .network import Network, build_network
