"""
Shared utility functions.

This package contains utility code used across multiple
pipeline stages.
"""

from .logging import JsonlFormatter, log_event, setup_logging
from .pool import run_pool

__all__ = [
    "setup_logging",
    "log_event",
    "JsonlFormatter",
    "run_pool",
]
