"""Stack management for the stop, down and status commands."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from ..context import Context
from ..shared.containers import (
    BOT_SERVICE,
    COMPOSE_PROJECT,
    METRICS_SERVICE,
    PRIMARY_SERVICE,
    WEB3_SERVICE,
)
from ..shared.logging import get_logger
from ..shared.paths import compose_log_file
from .compose import VERSION_ENV
from .supervisor import ProcessOutcome, StreamMode, spawn

logger = get_logger(__name__)

KNOWN_SERVICES = (PRIMARY_SERVICE, BOT_SERVICE, METRICS_SERVICE, WEB3_SERVICE)


class StackState(Enum):
    """State of the developer stack."""

    STOPPED = "stopped"  # Primary service not running
    STARTING = "starting"  # Running, health check pending
    RUNNING = "running"  # Running and healthy
    UNHEALTHY = "unhealthy"  # Running but failing its health check


@dataclass
class StackStatus:
    """Status of the developer stack."""

    state: StackState
    running_services: list[str] = field(default_factory=list)
    health: str | None = None
    message: str = ""


class StackManager:
    """Stop, remove and inspect the compose project."""

    def __init__(self, ctx: Context):
        self.ctx = ctx

    async def _compose(self, label: str, verb_args: list[str], timeout: float) -> ProcessOutcome:
        proc = await spawn(
            ["docker", "compose", "-p", COMPOSE_PROJECT, *verb_args],
            cwd=self.ctx.project_dir,
            log_path=compose_log_file(self.ctx.project_dir),
            label=label,
            env={VERSION_ENV: self.ctx.version},
            stdout=StreamMode.CAPTURE,
            stderr=StreamMode.CAPTURE,
        )
        return await proc.wait_with_deadline(timeout)

    async def stop(self, timeout: float) -> ProcessOutcome:
        """Stop every container of the stack, keeping them for a restart."""
        logger.info("stopping stack")
        return await self._compose("stop", ["stop"], timeout)

    async def down(self, timeout: float) -> ProcessOutcome:
        """Remove every container and volume of the stack."""
        logger.info("removing stack")
        return await self._compose("down", ["down", "--volumes"], timeout)

    async def status(self) -> StackStatus:
        """Get current stack status.

        Returns:
            StackStatus with current state and running services.
        """
        containers = await self.ctx.runtime.running_containers()
        running = sorted(name for name in containers if name in KNOWN_SERVICES)

        if PRIMARY_SERVICE not in containers:
            return StackStatus(
                StackState.STOPPED,
                running_services=running,
                message=f"{PRIMARY_SERVICE} is not running",
            )

        health = await self.ctx.runtime.health_status(containers[PRIMARY_SERVICE])
        if health == "healthy":
            state = StackState.RUNNING
        elif health == "unhealthy":
            state = StackState.UNHEALTHY
        else:
            state = StackState.STARTING
        return StackStatus(state, running_services=running, health=health)
