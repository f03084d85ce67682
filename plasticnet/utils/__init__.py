"""
Small utilities shared across the simulator.
"""
from .logging import get_logger, configure, detach_output
