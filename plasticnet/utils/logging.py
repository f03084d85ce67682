"""A print-based logger for simulation runs.

Every rank of a distributed run prints to its own stdout, so messages carry
the rank they came from. Output can be mirrored to a log file opened by the
command-line driver. Unsophisticated, but visible.

Usage:
    from plasticnet.utils import get_logger
    log = get_logger("my_module")
    log.info("Built %d synapses", 1000)
"""

import sys
import threading
from datetime import datetime

LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}

_settings = {"level": "INFO"}

# Thread ranks share a process, so rank tag and log file are per thread.
_local = threading.local()


def configure(rank=None, out=None, level=None):
    """Set logger defaults for the calling rank.

    Parameters
    ----------
    rank : int, optional
        Rank of this process, shown in every message header.
    out : file-like, optional
        Additional output stream (e.g., an open log file).
    level : str, optional
        Minimum level printed: DEBUG, INFO, WARNING or ERROR.
    """
    if rank is not None:
        _local.rank = rank
    if out is not None:
        _local.out = out
    if level is not None:
        if level not in LEVELS:
            raise ValueError(f"Unknown log level: {level}")
        _settings["level"] = level


def detach_output():
    """Stop mirroring the calling rank's messages to its extra stream."""
    _local.out = None


def get_logger(name, out=None, rank=None):
    """Create a print-based logger.

    Parameters
    ----------
    name : str
        Logger name, displayed in every message header.
    out : file-like, optional
        Additional output stream. Defaults to the stream set by configure().
    rank : int, optional
        Rank tag. Defaults to the rank set by configure().

    Returns
    -------
    callable
        A log function with .debug, .info, .warning, .error methods.
    """
    line_length = 72

    def _prefix():
        tag = rank if rank is not None else getattr(_local, "rank", None)
        return f"plasticnet:{name}" + (f"[{tag}]" if tag is not None else "")

    def _outputs():
        extra = out or getattr(_local, "out", None)
        return [sys.stdout] + ([extra] if extra else [])

    def _header(level, outputs):
        now = datetime.now().strftime("%H:%M:%S")
        for dest in outputs:
            print(f"{'_' * line_length}", file=dest)
            print(f"{_prefix()} {level} [{now}]", file=dest)

    def log(level, msg, args):
        if LEVELS[level] < LEVELS[_settings["level"]]:
            return
        outputs = _outputs()
        _header(level, outputs)
        for dest in outputs:
            try:
                print(msg % args, file=dest)
            except TypeError:
                print(msg, file=dest)

    log.debug = lambda msg, *args: log("DEBUG", msg, args)
    log.info = lambda msg, *args: log("INFO", msg, args)
    log.warning = lambda msg, *args: log("WARNING", msg, args)
    log.error = lambda msg, *args: log("ERROR", msg, args)

    return log
