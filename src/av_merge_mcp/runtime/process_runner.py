"""Process runner with bounded lifetime and concurrent output draining.

av-merge-mcp runtime module v0.1.0

This module provides:
- Launching an external executable with an environment override
- Combined stdout/stderr capture, drained concurrently with the wait
- Wall-clock timeout with reliable termination (SIGTERM -> timeout -> SIGKILL)
- Cancel-safe cleanup using asyncio.shield

Key design points:
- stderr is redirected into stdout so a single ordered stream is captured
- The drain task runs while the caller waits; a full pipe can never block exit
- After exit (or kill) the drain task gets a bounded grace period, then is
  abandoned
- POSIX: start_new_session=True so termination reaches the whole process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio

from .errors import ExecutionTimeoutError, LaunchFailedError, NonZeroExitError

__all__ = [
    "Invocation",
    "Outcome",
    "ProcessRunner",
    "LineObserver",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TIMEOUT = 30.0  # seconds allotted to the process
DEFAULT_READER_GRACE = 1.0  # seconds to wait for the drain task after exit
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

READ_CHUNK_SIZE = 4096
MAX_LINE_BYTES = 64 * 1024
_CR = ord("\r")
_LF = ord("\n")

LineObserver = Callable[[str], None]


@dataclass(frozen=True)
class Invocation:
    """A single external process invocation.

    Attributes:
        executable: Path to the executable (bare names are resolved on PATH)
        args: Ordered argument list, excluding the executable
        env: Environment overrides, merged over the current environment
        timeout: Wall-clock budget in seconds
        cwd: Optional working directory
    """

    executable: Path
    args: Sequence[str] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT
    cwd: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "executable", Path(self.executable))
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "env", dict(self.env))
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")

    @property
    def name(self) -> str:
        return self.executable.name

    @property
    def argv(self) -> list[str]:
        return [str(self.executable), *self.args]

    def merged_env(self) -> dict[str, str]:
        """Current environment plus overrides (overrides win)."""
        env = dict(os.environ)
        env.update(self.env)
        return env


@dataclass(frozen=True)
class Outcome:
    """Result of one invocation.

    Attributes:
        exit_code: Exit code, None if the process never completed
        output: Captured combined output, one entry per line, in order
        timed_out: Whether the process was killed on timeout
        duration_sec: Wall-clock duration of the invocation
    """

    exit_code: int | None
    output: list[str] = field(default_factory=list)
    timed_out: bool = False
    duration_sec: float = 0.0

    @property
    def text(self) -> str:
        return "\n".join(self.output)


class _LineSplitter:
    """Incremental byte-chunk to text-line splitter.

    "\\r\\n", "\\n" and a lone "\\r" all end a line; FFmpeg separates its
    progress updates with "\\r". A "\\r" at the end of a chunk is held until
    the next chunk shows whether a "\\n" follows.
    """

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self._buffer = bytearray()
        self._max = max_line_bytes

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer.extend(chunk)
        lines: list[str] = []
        while True:
            idx = self._find_terminator()
            if idx < 0:
                break
            end = idx + 1
            if self._buffer[idx] == _CR:
                if end == len(self._buffer):
                    break
                if self._buffer[end] == _LF:
                    end += 1
            lines.append(self._decode(self._buffer[:idx]))
            del self._buffer[:end]
        # Guard against a producer that never emits a line terminator
        while len(self._buffer) >= self._max:
            lines.append(self._decode(self._buffer[: self._max]))
            del self._buffer[: self._max]
        return lines

    def flush(self) -> list[str]:
        if not self._buffer:
            return []
        raw = self._buffer[:-1] if self._buffer.endswith(b"\r") else self._buffer
        line = self._decode(raw)
        self._buffer.clear()
        return [line]

    def _find_terminator(self) -> int:
        cr = self._buffer.find(b"\r")
        lf = self._buffer.find(b"\n")
        if cr < 0 or lf < 0:
            return max(cr, lf)
        return min(cr, lf)

    @staticmethod
    def _decode(raw: bytes | bytearray) -> str:
        return bytes(raw).decode("utf-8", errors="replace")


@dataclass
class ProcessRunner:
    """Runs one external process to completion under a timeout.

    Example:
        runner = ProcessRunner()
        invocation = Invocation(
            executable=Path("/opt/ffmpeg/bin/ffmpeg"),
            args=["-version"],
            env={"LD_LIBRARY_PATH": "/opt/ffmpeg/lib"},
            timeout=10,
        )
        outcome = await runner.run(invocation, on_line=print)

    Raises from run():
        LaunchFailedError: executable missing or not runnable
        ExecutionTimeoutError: timeout elapsed, process was killed
        NonZeroExitError: process exited with a nonzero code
    """

    reader_grace: float = DEFAULT_READER_GRACE
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def run(
        self,
        invocation: Invocation,
        *,
        on_line: LineObserver | None = None,
    ) -> Outcome:
        """Run the invocation and return its outcome.

        This method:
        1. Starts the process with merged environment and stderr -> stdout
        2. Drains the combined stream concurrently (on_line sees each line)
        3. Waits for exit bounded by invocation.timeout
        4. Joins the drain task with reader_grace
        5. Terminates the process if cancelled, even while awaiting

        Args:
            invocation: What to run
            on_line: Optional observer called with each output line

        Returns:
            Outcome with exit_code 0

        Raises:
            LaunchFailedError, ExecutionTimeoutError, NonZeroExitError
        """
        env = invocation.merged_env()
        executable = self._resolve_executable(invocation.executable, env)
        argv = [str(executable), *invocation.args]
        kwargs = self._build_subprocess_kwargs(invocation, env)

        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                **kwargs,
            )
        except OSError as e:
            raise LaunchFailedError(executable, e.strerror or str(e)) from e

        logger.debug(
            f"Started subprocess pid={process.pid} argv={' '.join(argv)}"
        )

        lines: list[str] = []
        drain_task: asyncio.Task[None] = asyncio.create_task(
            self._drain_output(process, lines, on_line)
        )

        try:
            with anyio.move_on_after(invocation.timeout) as scope:
                await process.wait()

            timed_out = scope.cancelled_caught and process.returncode is None
            if timed_out:
                logger.warning(
                    f"Subprocess pid={process.pid} exceeded timeout "
                    f"{invocation.timeout:g}s, terminating"
                )
                await self.terminate(process)

            await self._join_reader(drain_task)

        finally:
            await self._safe_cleanup(process, drain_task)

        elapsed = time.monotonic() - started

        if timed_out:
            outcome = Outcome(
                exit_code=None,
                output=lines,
                timed_out=True,
                duration_sec=elapsed,
            )
            raise ExecutionTimeoutError(
                invocation.name, invocation.timeout, elapsed, outcome
            )

        exit_code = process.returncode
        logger.debug(
            f"Subprocess completed pid={process.pid} returncode={exit_code} "
            f"lines={len(lines)} duration={elapsed:.3f}s"
        )

        if exit_code != 0:
            raise NonZeroExitError(invocation.name, exit_code, lines)

        return Outcome(
            exit_code=0,
            output=lines,
            timed_out=False,
            duration_sec=elapsed,
        )

    def _resolve_executable(self, executable: Path, env: Mapping[str, str]) -> Path:
        """Check the executable exists and is runnable.

        Bare names (no directory part) are looked up on the merged PATH.
        """
        if executable.parent == Path(".") and not executable.is_file():
            found = shutil.which(str(executable), path=env.get("PATH"))
            if found is None:
                raise LaunchFailedError(executable, "not found on PATH")
            return Path(found)

        if not executable.exists():
            raise LaunchFailedError(executable, "no such file")
        if not executable.is_file():
            raise LaunchFailedError(executable, "not a regular file")
        if not IS_WINDOWS and not os.access(executable, os.X_OK):
            raise LaunchFailedError(executable, "permission denied")
        return executable

    def _build_subprocess_kwargs(
        self,
        invocation: Invocation,
        env: dict[str, str],
    ) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {"env": env}

        if invocation.cwd is not None:
            kwargs["cwd"] = invocation.cwd

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _drain_output(
        self,
        process: asyncio.subprocess.Process,
        lines: list[str],
        on_line: LineObserver | None,
    ) -> None:
        """Read the combined stream until EOF, appending decoded lines.

        Args:
            process: The subprocess
            lines: Accumulator, written only by this task
            on_line: Optional observer for each line
        """
        if process.stdout is None:
            return

        splitter = _LineSplitter()

        def emit(batch: list[str]) -> None:
            for line in batch:
                lines.append(line)
                if on_line is None:
                    logger.debug(f"[pid={process.pid}] {line}")
                    continue
                try:
                    on_line(line)
                except Exception as e:
                    logger.warning(f"Line observer raised: {e}")

        try:
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                emit(splitter.feed(chunk))
        except OSError as e:
            logger.error(f"Error reading subprocess output pid={process.pid}: {e}")
        finally:
            emit(splitter.flush())

    async def _join_reader(self, drain_task: asyncio.Task[None]) -> None:
        """Give the drain task a bounded grace period to finish."""
        await asyncio.wait({drain_task}, timeout=self.reader_grace)
        if not drain_task.done():
            logger.warning(
                f"Output reader still running after {self.reader_grace:g}s grace, "
                f"abandoning it"
            )

    async def _safe_cleanup(
        self,
        process: asyncio.subprocess.Process,
        drain_task: asyncio.Task[None],
    ) -> None:
        """Cleanup shielded from cancellation.

        Args:
            process: The subprocess to terminate
            drain_task: The output draining task
        """
        try:
            await asyncio.shield(self._do_cleanup(process, drain_task))
        except asyncio.CancelledError:
            # If shield itself is cancelled, still try cleanup
            await self._do_cleanup(process, drain_task)
            raise

    async def _do_cleanup(
        self,
        process: asyncio.subprocess.Process,
        drain_task: asyncio.Task[None],
    ) -> None:
        if process.returncode is None:
            await self.terminate(process)

        if not drain_task.done():
            drain_task.cancel()
        try:
            await drain_task
        except asyncio.CancelledError:
            pass

    async def terminate(self, process: asyncio.subprocess.Process) -> None:
        """Terminate subprocess gracefully, then forcefully if needed.

        Idempotent: a process that already exited is left alone, and
        calling this twice does not raise.

        Termination strategy:
        1. Send SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (kill() on Windows)
        4. Wait up to kill_timeout for forced exit

        Args:
            process: The subprocess to terminate
        """
        if process.returncode is not None:
            return

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_signal(process, signal.SIGTERM)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(process, signal.SIGKILL)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal(
        self,
        process: asyncio.subprocess.Process,
        sig: signal.Signals,
    ) -> None:
        """Signal the process group, falling back to the process itself."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to send_signal: {e}")
            process.send_signal(sig)

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()
