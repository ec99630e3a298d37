"""Runtime module for bounded external process execution.

This module launches an external tool, drains its combined output while
waiting, enforces a wall-clock timeout and translates the outcome into a
typed result or an ExecutionError.
"""

from __future__ import annotations

from .errors import (
    ExecutionError,
    ExecutionTimeoutError,
    LaunchFailedError,
    NonZeroExitError,
    OutputMissingError,
    PreconditionFailedError,
)
from .process_runner import Invocation, LineObserver, Outcome, ProcessRunner

__all__ = [
    "Invocation",
    "LineObserver",
    "Outcome",
    "ProcessRunner",
    "ExecutionError",
    "ExecutionTimeoutError",
    "LaunchFailedError",
    "NonZeroExitError",
    "OutputMissingError",
    "PreconditionFailedError",
]
