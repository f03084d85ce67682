"""Command-line driver: Poisson inputs onto LIF neurons with BCPNN/STDP.

Run on one rank:
    plasticnet-sim --simtime 1.0 --dir out

Run on four thread ranks of one process:
    plasticnet-sim --ranks 4 --dir out

Run under MPI, one rank per process:
    mpirun -n 4 plasticnet-sim --mpi --dir out

Exit codes: 0 success, 1 failed run, 2 bad configuration,
4711/4712 monitored neuron out of range, 4713 npostsyn > nbinputs.
"""

import argparse
import sys
from pathlib import Path

from plasticnet.config import SimulationConfig
from plasticnet.errors import (
    EXIT_RUN_FAILED, CollectiveAborted, ConfigurationError, ValidationError,
)
from plasticnet.simulation.comm import (
    MPICommunicator, SerialCommunicator, ThreadGroup,
)
from plasticnet.simulation.context import SimulationContext
from plasticnet.simulation.network import build_network
from plasticnet.simulation.runner import DistributedRunner
from plasticnet.utils import configure, detach_output, get_logger

LOG = get_logger("simulation.run")

# Command-line options that map one-to-one onto configuration fields.
OPTIONS = [
    ("dir", str, "output directory"),
    ("prefix", str, "output file prefix"),
    ("simtime", float, "simulation time (s)"),
    ("dt", float, "time step (s)"),
    ("sparseness", float, "connection probability"),
    ("npostsyn", int, "inputs per postsynaptic neuron (sets sparseness)"),
    ("winit", float, "initial weight, Poisson -> presynaptic"),
    ("winit2", float, "initial weight, presynaptic -> postsynaptic"),
    ("kappa", float, "presynaptic firing rate (Hz)"),
    ("nbinputs", int, "number of Poisson inputs"),
    ("size", int, "number of postsynaptic neurons"),
    ("seed", int, "random seed"),
    ("tau_pre", float, "STDP presynaptic time constant (s)"),
    ("tau_post", float, "STDP postsynaptic time constant (s)"),
    ("eta", float, "STDP learning rate"),
    ("wmin", float, "STDP lower weight bound"),
    ("wmax", float, "STDP upper weight bound"),
    ("tau_z_pr", float, "BCPNN presynaptic z-trace time constant (s), tau_pre if unset"),
    ("tau_z_po", float, "BCPNN postsynaptic z-trace time constant (s)"),
    ("tau_p", float, "BCPNN probability time constant (s)"),
    ("wgain", float, "BCPNN weight gain"),
    ("bgain", float, "BCPNN bias gain"),
    ("refractory_period", float, "refractory period (s)"),
    ("ipre", int, "monitored presynaptic neuron"),
    ("ipost", int, "monitored postsynaptic neuron"),
    ("sampling_interval", float, "weight sampling period (s)"),
]

FLAGS = [
    ("with_stdp", "add an STDP connection"),
    ("with_bcpnn", "add a BCPNN connection"),
    ("nomon", "disable monitors"),
]


def _bool(text):
    lowered = text.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {text!r}")


def _rank_count(text):
    value = int(text)
    if value < 1:
        raise argparse.ArgumentTypeError(f"need at least one rank, got {value}")
    return value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="plasticnet-sim",
        description="Poisson inputs driving LIF neurons through sparse "
                    "static, BCPNN and STDP connections.")
    parser.add_argument("-c", "--config", default=None,
                        help="YAML configuration; command-line options override it.")
    for name, kind, text in OPTIONS:
        parser.add_argument(f"--{name}", type=kind, default=None, help=text)
    for name, text in FLAGS:
        parser.add_argument(f"--{name}", type=_bool, default=None,
                            metavar="BOOL", help=text)
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument("--ranks", type=_rank_count, default=1,
                         help="number of thread ranks in this process")
    backend.add_argument("--mpi", action="store_true",
                         help="one rank per MPI process (needs mpi4py)")
    parser.add_argument("--loglevel", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return parser


def load_config(args):
    """Merge the YAML configuration (if any) with command-line overrides."""
    base = SimulationConfig.from_yaml(args.config) if args.config else SimulationConfig()
    values = base.to_dict()
    for name, *_ in OPTIONS + FLAGS:
        value = getattr(args, name)
        if value is not None:
            values[name] = value
    if args.sparseness is not None and args.npostsyn is None:
        values["npostsyn"] = None
    return SimulationConfig.from_mapping(values).validate()


def simulate_rank(comm, config):
    """Build, run and tear down one rank. Returns the rank's result code."""
    configure(rank=comm.rank)
    context = SimulationContext(seed=config.seed, dt=config.dt, comm=comm,
                                output_dir=config.dir, prefix=config.prefix)
    Path(config.dir).mkdir(parents=True, exist_ok=True)
    with open(context.fn("log"), "w") as logfile:
        configure(out=logfile)
        try:
            try:
                build_network(config, context)
            except ValidationError as exc:
                LOG.error("ERROR in network construction: %s", exc)
                comm.abort(exc.exit_code)
            code = DistributedRunner(context).execute(config.simtime)
            LOG.info("Freeing ...")
            return code
        finally:
            detach_output()


def main(argv=None):
    args = build_parser().parse_args(argv)
    configure(level=args.loglevel)
    LOG.info("plasticnet-sim %s", " ".join(sys.argv[1:] if argv is None else argv))

    try:
        config = load_config(args)
    except ConfigurationError as exc:
        LOG.error("Configuration error: %s", exc)
        return exc.exit_code

    try:
        if args.mpi:
            return simulate_rank(MPICommunicator(), config)
        if args.ranks > 1:
            codes = ThreadGroup(args.ranks).run(simulate_rank, config)
            return max(codes)
        return simulate_rank(SerialCommunicator(), config)
    except CollectiveAborted as exc:
        LOG.error("Run aborted: %s", exc)
        return exc.exit_code if exc.exit_code is not None else 1
    except OSError as exc:
        LOG.error("Cannot write run output: %s", exc)
        return EXIT_RUN_FAILED


if __name__ == "__main__":
    sys.exit(main())
