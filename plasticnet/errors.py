"""
Exception classes for plasticnet.

Exception Hierarchy:
====================
PlasticnetError (base)
├── ConfigurationError - invalid or contradictory run parameters
├── ValidationError    - network construction rejected a request
├── StepFailure        - a simulation step produced an unusable state
├── RunnerStateError   - illegal runner state transition
└── CollectiveAborted  - a peer rank aborted a collective operation

Configuration and validation errors carry the process exit code the
command-line driver reports for them.
"""

from __future__ import annotations

# Exit codes
EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_BAD_CONFIG = 2
EXIT_IPRE_OUT_OF_RANGE = 4711
EXIT_IPOST_OUT_OF_RANGE = 4712
EXIT_NPOSTSYN_TOO_LARGE = 4713


class PlasticnetError(Exception):
    """Base exception for all plasticnet errors."""


class ConfigurationError(PlasticnetError):
    """Invalid configuration parameters.

    Raised before any network is built, when configuration values are
    out of range or incompatible with each other.
    """

    def __init__(self, message: str, exit_code: int = EXIT_BAD_CONFIG):
        super().__init__(message)
        self.exit_code = exit_code


class ValidationError(PlasticnetError):
    """A construction-time request the network cannot honour.

    Fatal for every cooperating rank: the driver answers it with a
    collective abort.
    """

    def __init__(self, message: str, exit_code: int):
        super().__init__(message)
        self.exit_code = exit_code


class StepFailure(PlasticnetError):
    """A simulation step left the network in a non-finite state."""


class RunnerStateError(PlasticnetError):
    """An operation was requested in the wrong runner state."""


class CollectiveAborted(PlasticnetError):
    """A peer rank aborted while this rank waited in a collective."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


def check_index(index: int, size: int, label: str, exit_code: int) -> None:
    """Raise ValidationError unless 0 <= index < size."""
    if not 0 <= index < size:
        raise ValidationError(
            f"{label}={index} out of range for population of size {size}",
            exit_code,
        )
