"""Health polling for the boot pipeline.

Waits for the primary service container to report a healthy status through
the container runtime.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import httpx

from ..remote.runtime import DockerAPIError, DockerClient
from ..shared.logging import get_logger
from ..utils import first_completed, sleep_then

logger = get_logger(__name__)

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
NO_HEALTHCHECK = "none"


@dataclass
class HealthCheckResult:
    """Result of a health wait."""

    healthy: bool
    status: str | None = None
    attempts: int = 0
    elapsed_seconds: float = 0.0
    error: str | None = None


class HealthWaiter:
    """Poll a container's health status."""

    def __init__(
        self,
        runtime: DockerClient,
        overall_timeout: float = 60.0,
        interval_seconds: float = 5.0,
    ):
        """Initialize health waiter.

        Args:
            runtime: Container runtime client.
            overall_timeout: Seconds before the whole wait gives up.
            interval_seconds: Seconds between polls.
        """
        self.runtime = runtime
        self.overall_timeout = overall_timeout
        self.interval_seconds = interval_seconds

    async def wait_healthy(
        self,
        container_id: str,
        timeout: float = 5.0,
        on_attempt: Callable[[int, str | None], None] | None = None,
    ) -> HealthCheckResult:
        """Poll until healthy, unhealthy, or the overall timer fires.

        Args:
            container_id: Container to watch.
            timeout: Timeout of each individual status request.
            on_attempt: Optional callback called with (attempt, status)
                       for progress reporting.

        Returns:
            HealthCheckResult with status information.
        """
        start = datetime.now()
        index, result = await first_completed(
            self._poll(container_id, timeout, on_attempt, start),
            sleep_then(self.overall_timeout),
        )
        if index == 0:
            return result

        elapsed = (datetime.now() - start).total_seconds()
        logger.error("health check timed out", container=container_id, elapsed=elapsed)
        return HealthCheckResult(
            healthy=False,
            elapsed_seconds=elapsed,
            error="health check timed out",
        )

    async def _poll(
        self,
        container_id: str,
        timeout: float,
        on_attempt: Callable[[int, str | None], None] | None,
        start: datetime,
    ) -> HealthCheckResult:
        attempt = 0
        while True:
            attempt += 1
            status: str | None = None
            try:
                status = await self.runtime.health_status(container_id, timeout=timeout)
            except (DockerAPIError, httpx.HTTPError) as e:
                logger.debug("health status unavailable", container=container_id, error=str(e))

            if on_attempt:
                on_attempt(attempt, status)

            if status in (HEALTHY, UNHEALTHY, NO_HEALTHCHECK):
                elapsed = (datetime.now() - start).total_seconds()
                if status == HEALTHY:
                    return HealthCheckResult(
                        healthy=True,
                        status=status,
                        attempts=attempt,
                        elapsed_seconds=elapsed,
                    )
                error = (
                    "container reported unhealthy"
                    if status == UNHEALTHY
                    else "container has no health check configured"
                )
                return HealthCheckResult(
                    healthy=False,
                    status=status,
                    attempts=attempt,
                    elapsed_seconds=elapsed,
                    error=error,
                )

            await asyncio.sleep(self.interval_seconds)
