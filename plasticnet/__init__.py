"""plasticnet: sparse plastic spiking networks, partitioned over ranks.

Poisson inputs drive leaky integrate-and-fire neurons through sparse
static, STDP and BCPNN connections. Runs are reproducible from one master
seed and independent of the number of cooperating ranks.

Subpackages and modules:
    config      Run configuration (dataclass, YAML)
    errors      Exception hierarchy and exit codes
    simulation  Groups, connectivity, plasticity, monitors, runner, CLI
    utils       Print-based logging
"""

__version__ = "0.1.0"
