"""Error taxonomy for msde-cli.

Pipeline-level steps (boot, health wait) raise these and abort. The sync
engine catches them per item and turns them into warnings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class MsdeError(Exception):
    """Base error class for msde-cli errors."""

    message: str
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass
class StepTimeout(MsdeError):
    """A bounded wait exceeded its deadline."""

    message: str = "Operation timed out"
    log_path: Path | None = None


@dataclass
class ProcessFailure(MsdeError):
    """A supervised process exited with a nonzero status."""

    message: str = "Process failed"
    exit_code: int | None = None
    log_path: Path | None = None


@dataclass
class ProtocolViolation(MsdeError):
    """Unexpected content on a remote stream."""

    message: str = "Unexpected response from the remote side"


@dataclass
class ParseError(ProtocolViolation):
    """Remote output did not match the result tuple grammar."""

    message: str = "Malformed result tuple"
    text: str = ""


@dataclass
class RemoteTransientFailure(MsdeError):
    """The remote side reported a still-working status."""

    message: str = "Remote operation still in progress"
    retryable: bool = True


@dataclass
class RemoteTerminalFailure(MsdeError):
    """The remote side reported a terminal failure status."""

    message: str = "Remote operation failed"


@dataclass
class ContainerNotRunning(MsdeError):
    """The target container is not running."""

    message: str = "Target container is not running"
    container: str = ""


@dataclass
class HealthCheckFailed(MsdeError):
    """The primary service never reported healthy."""

    message: str = "Health check failed"


@dataclass
class HookFailed(MsdeError):
    """A lifecycle hook script failed."""

    message: str = "Custom hook script failed. Check the output above for details."


def container_not_running(name: str) -> ContainerNotRunning:
    """Build a ContainerNotRunning error for a container name.

    Args:
        name: Container name without the leading slash

    Returns:
        ContainerNotRunning naming the container
    """
    return ContainerNotRunning(
        message=f"Container '{name}' is not running",
        container=name,
        data={"container": name},
    )
