"""Execution error taxonomy.

av-merge-mcp runtime module v0.1.0

Every error carries a short ``code`` so the tool boundary can report it
through a single error channel.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .process_runner import Outcome

__all__ = [
    "ExecutionError",
    "LaunchFailedError",
    "ExecutionTimeoutError",
    "NonZeroExitError",
    "PreconditionFailedError",
    "OutputMissingError",
]


class ExecutionError(Exception):
    """Base class for external process failures."""

    code = "EXECUTION_ERROR"


class LaunchFailedError(ExecutionError):
    """Executable missing or not runnable.

    Attributes:
        executable: Path that failed to launch
        reason: OS-level reason
    """

    code = "LAUNCH_FAILED"

    def __init__(self, executable: str | Path, reason: str) -> None:
        self.executable = str(executable)
        self.reason = reason
        super().__init__(f"Failed to launch {self.executable}: {reason}")


class ExecutionTimeoutError(ExecutionError):
    """Process exceeded its allotted duration and was killed.

    Attributes:
        timeout: Configured timeout (seconds)
        elapsed: Wall-clock time until termination (seconds)
        outcome: Partial outcome with ``timed_out=True``
    """

    code = "TIMEOUT"

    def __init__(
        self,
        name: str,
        timeout: float,
        elapsed: float,
        outcome: Outcome,
    ) -> None:
        self.timeout = timeout
        self.elapsed = elapsed
        self.outcome = outcome
        super().__init__(
            f"{name} timed out after {timeout:g}s (elapsed {elapsed:.1f}s)"
        )

    @property
    def output(self) -> list[str]:
        return self.outcome.output


class NonZeroExitError(ExecutionError):
    """Process ran to completion but reported failure.

    Attributes:
        exit_code: Process exit code
        output: Captured output lines
    """

    code = "NON_ZERO_EXIT"

    def __init__(self, name: str, exit_code: int, output: list[str]) -> None:
        self.exit_code = exit_code
        self.output = output
        text = "\n".join(output)
        super().__init__(f"{name} failed with exit code {exit_code}: {text}")


class PreconditionFailedError(ExecutionError):
    """Inputs missing or binary sanity probe failed.

    Attributes:
        platform: Platform description, set when the failure may be an
            architecture mismatch
    """

    code = "PRECONDITION_FAILED"

    def __init__(self, message: str, platform: str | None = None) -> None:
        self.platform = platform
        if platform:
            message = f"{message} Architecture: {platform}."
        super().__init__(message)


class OutputMissingError(ExecutionError):
    """Process exited 0 but the expected output file is absent."""

    code = "OUTPUT_MISSING"

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        super().__init__(f"Output file was not created: {self.path}")
