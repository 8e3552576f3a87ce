"""Process supervision for compose invocations.

Spawns one external command, drains its output while it runs, and races its
exit against a deadline. Any non-success outcome rewrites the diagnostic log
under <project>/log/ and surfaces its location.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..errors import ProcessFailure, StepTimeout
from ..shared.logging import get_logger
from ..utils import first_completed, sleep_then

logger = get_logger(__name__)

# Seconds to wait after SIGTERM before SIGKILL
TERMINATE_GRACE_SECONDS = 10.0

_TIMED_OUT = object()


class StreamMode(Enum):
    """Where a child's output stream goes."""

    CAPTURE = "capture"  # Buffered, written to the diagnostic log on failure
    INHERIT = "inherit"  # Passed straight through to the terminal
    DISCARD = "discard"


def _stream_target(mode: StreamMode) -> int | None:
    if mode is StreamMode.CAPTURE:
        return asyncio.subprocess.PIPE
    if mode is StreamMode.DISCARD:
        return asyncio.subprocess.DEVNULL
    return None


@dataclass
class ProcessOutcome:
    """Result of a successful supervised run."""

    args: list[str]
    exit_code: int
    elapsed_seconds: float


class SupervisedProcess:
    """Handle to a running child process."""

    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        args: list[str],
        log_path: Path,
        label: str,
    ):
        self.proc = proc
        self.args = args
        self.log_path = log_path
        self.label = label
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._started = time.monotonic()
        self._readers = [
            asyncio.ensure_future(self._drain(proc.stdout, self._stdout)),
            asyncio.ensure_future(self._drain(proc.stderr, self._stderr)),
        ]

    @staticmethod
    async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(8192)
            if not chunk:
                break
            buffer.extend(chunk)

    @property
    def stdout(self) -> str:
        """Output captured so far."""
        return self._stdout.decode(errors="replace")

    @property
    def stderr(self) -> str:
        """Error output captured so far."""
        return self._stderr.decode(errors="replace")

    async def write_input(self, data: bytes) -> None:
        """Stream bytes to the child's stdin, then flush and close it.

        Closing is required before waiting, otherwise a child that reads
        until EOF never exits.
        """
        stdin = self.proc.stdin
        if stdin is None:
            raise ValueError("Process was not started with an input channel")
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.warning("process closed its input early", step=self.label)
        finally:
            stdin.close()

    async def wait_with_deadline(self, duration: float) -> ProcessOutcome:
        """Race process completion against a timer.

        Args:
            duration: Deadline in seconds

        Returns:
            ProcessOutcome on a zero exit status.

        Raises:
            ProcessFailure: The process exited nonzero.
            StepTimeout: The deadline elapsed first. The process is terminated
                and its remaining output captured.
        """
        index, result = await first_completed(
            self.proc.wait(),
            sleep_then(duration, _TIMED_OUT),
        )
        elapsed = time.monotonic() - self._started

        if index == 1:
            await self._terminate()
            self.write_diagnostic_log()
            logger.error(
                "process timed out",
                step=self.label,
                timeout=duration,
                log_file=str(self.log_path),
            )
            raise StepTimeout(
                message=(
                    f"'{self.label}' did not finish within {duration:.0f}s. "
                    f"See the logs at {self.log_path}"
                ),
                log_path=self.log_path,
                data={"step": self.label, "timeout": duration},
            )

        exit_code = result
        await asyncio.gather(*self._readers)
        if exit_code != 0:
            self.write_diagnostic_log()
            logger.error(
                "process failed",
                step=self.label,
                exit_code=exit_code,
                log_file=str(self.log_path),
            )
            raise ProcessFailure(
                message=(
                    f"'{self.label}' exited with status {exit_code}. "
                    f"See the logs at {self.log_path}"
                ),
                exit_code=exit_code,
                log_path=self.log_path,
                data={"step": self.label},
            )

        logger.debug("process finished", step=self.label, elapsed=round(elapsed, 2))
        return ProcessOutcome(args=self.args, exit_code=exit_code, elapsed_seconds=elapsed)

    async def _terminate(self) -> None:
        if self.proc.returncode is None:
            try:
                self.proc.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(self.proc.wait(), timeout=TERMINATE_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("process ignored SIGTERM, killing", step=self.label)
                self.proc.kill()
                await self.proc.wait()
        # Grandchildren may still hold the pipes open
        _, pending = await asyncio.wait(self._readers, timeout=TERMINATE_GRACE_SECONDS)
        for reader in pending:
            reader.cancel()

    def write_diagnostic_log(self) -> Path:
        """Truncate and rewrite the diagnostic log with labeled sections.

        Returns:
            Path of the written log file.
        """
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            "=== COMMAND ===",
            " ".join(self.args),
            "",
            "=== STDOUT ===",
            self.stdout if self.proc.stdout is not None else "(not captured)",
            "",
            "=== STDERR ===",
            self.stderr if self.proc.stderr is not None else "(not captured)",
            "",
        ]
        self.log_path.write_text("\n".join(lines))
        return self.log_path


async def spawn(
    args: Sequence[str],
    *,
    cwd: Path,
    log_path: Path,
    label: str,
    env: Mapping[str, str] | None = None,
    stdout: StreamMode = StreamMode.CAPTURE,
    stderr: StreamMode = StreamMode.CAPTURE,
    with_input: bool = False,
) -> SupervisedProcess:
    """Spawn a supervised process.

    Args:
        args: Executable and arguments
        cwd: Working directory
        log_path: Diagnostic log written on failure
        label: Human-readable step name used in errors
        env: Extra environment variables layered over os.environ
        stdout: Destination of standard output
        stderr: Destination of standard error
        with_input: Open a pipe to the child's stdin

    Returns:
        SupervisedProcess handle.
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    logger.debug("spawning process", step=label, args=" ".join(args), cwd=str(cwd))
    proc = await asyncio.create_subprocess_exec(
        *args,
        cwd=str(cwd),
        env=full_env,
        stdin=asyncio.subprocess.PIPE if with_input else asyncio.subprocess.DEVNULL,
        stdout=_stream_target(stdout),
        stderr=_stream_target(stderr),
    )
    return SupervisedProcess(proc, list(args), log_path, label)
