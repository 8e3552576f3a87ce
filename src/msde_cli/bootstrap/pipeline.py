"""Boot pipeline for the developer stack.

Starts the compose groups of a BootPlan one after another, applies the
post-boot side effects of the active features and waits for the primary
service to report healthy.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from ..context import Context
from ..errors import HealthCheckFailed
from ..remote.channel import REMOTE_ERRORS
from ..shared.containers import METRICS_SERVICE, PRIMARY_SERVICE, WEB3_SERVICE
from ..shared.logging import get_logger
from ..shared.paths import compose_log_file, docker_dir
from .compose import (
    VERSION_ENV,
    BootPlan,
    ComposeInvocation,
    build_boot_plan,
    build_volume_config,
    render_volume_config,
)
from .features import Feature
from .health import HealthCheckResult, HealthWaiter
from .patching import MSDE_CONFIG_PATH, ConfigPatcher, patch_container_config
from .supervisor import ProcessOutcome, StreamMode, spawn

logger = get_logger(__name__)

# Grafana admin bootstrap for the metrics group
METRICS_INIT_COMMAND = ["grafana-cli", "admin", "reset-admin-password", "admin"]

CONSUL_URL = "http://172.99.0.2:8500"

# Service registry fixups for the web3 group, in order
WEB3_REGISTRY_STEPS: list[tuple[str, list[str]]] = [
    (
        "register web3 consumer",
        [
            "curl", "-sf", "-X", "PUT",
            "--data", '{"ID": "web3_consumer", "Name": "web3_consumer", "Address": "172.99.0.7"}',
            f"{CONSUL_URL}/v1/agent/service/register",
        ],
    ),
    (
        "deregister stale msde",
        ["curl", "-sf", "-X", "PUT", f"{CONSUL_URL}/v1/agent/service/deregister/msde"],
    ),
    (
        "register msde",
        [
            "curl", "-sf", "-X", "PUT",
            "--data", '{"ID": "msde", "Name": "msde", "Address": "172.99.0.5", "Port": 4000}',
            f"{CONSUL_URL}/v1/agent/service/register",
        ],
    ),
]

RELOAD_CONFIG_EXPR = (
    f"{{:ok, [config]}} = :file.consult('{MSDE_CONFIG_PATH}'); Application.put_all_env(config)"
)

TRACING_OFF_EXPR = "Application.stop(:opentelemetry_exporter); Application.stop(:opentelemetry)"
TRACING_OFF_DELAY = 8.0

# Per-request timeout of each health status call
HEALTH_REQUEST_TIMEOUT = 5.0

AttachFn = Callable[[str], Awaitable[None]]
AfterHealthyFn = Callable[[], Awaitable[object]]


@dataclass
class BootResult:
    """Outcome of a successful boot."""

    plan: BootPlan
    health: HealthCheckResult
    outcomes: list[ProcessOutcome] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class BootPipeline:
    """Sequence compose groups and post-boot steps for one boot."""

    def __init__(
        self,
        ctx: Context,
        patcher: ConfigPatcher | None = None,
        health_waiter: HealthWaiter | None = None,
        tracing_off_delay: float = TRACING_OFF_DELAY,
    ):
        self.ctx = ctx
        self.patcher = patcher
        self.health_waiter = health_waiter or HealthWaiter(ctx.runtime)
        self.tracing_off_delay = tracing_off_delay

    async def boot(
        self,
        features: Iterable[Feature],
        timeout: float,
        *,
        build: bool = False,
        raw: bool = False,
        attach: AttachFn | None = None,
        after_healthy: AfterHealthyFn | None = None,
    ) -> BootResult:
        """Boot the stack.

        Args:
            features: Active features, any order
            timeout: Deadline in seconds for each compose group
            build: Pass --build to compose
            raw: Show compose output directly instead of capturing it
            attach: Follows the primary container's output; runs alongside
                the health wait
            after_healthy: Runs only once the primary container is healthy

        Returns:
            BootResult of the boot.

        Raises:
            StepTimeout: A compose group missed its deadline.
            ProcessFailure: A compose group failed.
            HealthCheckFailed: The primary service never became healthy.
        """
        started = time.monotonic()
        plan = build_boot_plan(features, build=build)
        volumes = render_volume_config(build_volume_config(self.ctx.project_dir, plan.features))
        logger.info("booting", groups=plan.labels, version=self.ctx.version)

        outcomes = []
        for invocation in plan.invocations:
            outcome = await self._launch(
                invocation,
                volumes if invocation.inject_volumes else None,
                timeout,
                raw,
            )
            outcomes.append(outcome)

        warnings = await self._post_boot(plan.features)

        tracing_off = None
        if Feature.OTEL not in plan.features:
            tracing_off = asyncio.ensure_future(self._disable_tracing())

        try:
            health = await self._wait_ready(attach, after_healthy)
        except BaseException:
            if tracing_off is not None:
                tracing_off.cancel()
                await asyncio.gather(tracing_off, return_exceptions=True)
            raise
        if tracing_off is not None:
            await tracing_off

        return BootResult(
            plan=plan,
            health=health,
            outcomes=outcomes,
            warnings=warnings,
            elapsed_seconds=time.monotonic() - started,
        )

    async def _launch(
        self,
        invocation: ComposeInvocation,
        volumes: bytes | None,
        timeout: float,
        raw: bool,
    ) -> ProcessOutcome:
        mode = StreamMode.INHERIT if raw else StreamMode.CAPTURE
        logger.info("starting group", group=invocation.label)
        proc = await spawn(
            invocation.args(docker_dir(self.ctx.project_dir)),
            cwd=self.ctx.project_dir,
            log_path=compose_log_file(self.ctx.project_dir),
            label=invocation.label,
            env={VERSION_ENV: self.ctx.version},
            stdout=mode,
            stderr=mode,
            with_input=volumes is not None,
        )
        if volumes is not None:
            await proc.write_input(volumes)
        return await proc.wait_with_deadline(timeout)

    async def _post_boot(self, features: list[Feature]) -> list[str]:
        warnings: list[str] = []
        channel = self.ctx.channel

        if Feature.METRICS in features:
            logger.info("initializing metrics")
            await channel.exec_in(METRICS_SERVICE, METRICS_INIT_COMMAND)

        if Feature.WEB3 in features:
            for label, command in WEB3_REGISTRY_STEPS:
                try:
                    await channel.exec_in(WEB3_SERVICE, command)
                except REMOTE_ERRORS as e:
                    logger.warning("web3 registry step failed", step=label, error=str(e))
                    warnings.append(f"web3 step '{label}' failed: {e}")

        container_id = await channel.container_id(PRIMARY_SERVICE)
        written = await patch_container_config(
            self.ctx.runtime, container_id, features, patcher=self.patcher
        )
        if not written:
            warnings.append("Could not write the feature configuration back to the server")
        await channel.rpc(RELOAD_CONFIG_EXPR)
        logger.debug("configuration reloaded")
        return warnings

    async def _disable_tracing(self) -> None:
        await asyncio.sleep(self.tracing_off_delay)
        try:
            await self.ctx.channel.rpc(TRACING_OFF_EXPR)
        except REMOTE_ERRORS as e:
            logger.warning("could not disable tracing", error=str(e))
        else:
            logger.debug("tracing disabled")

    async def _wait_ready(
        self,
        attach: AttachFn | None,
        after_healthy: AfterHealthyFn | None,
    ) -> HealthCheckResult:
        container_id = await self.ctx.channel.container_id(PRIMARY_SERVICE)

        async def gated() -> HealthCheckResult:
            health = await self.health_waiter.wait_healthy(
                container_id, timeout=HEALTH_REQUEST_TIMEOUT
            )
            if not health.healthy:
                raise HealthCheckFailed(
                    message=f"{PRIMARY_SERVICE} is not healthy: {health.error}",
                    data={"status": health.status, "attempts": health.attempts},
                )
            logger.info("server healthy", elapsed=round(health.elapsed_seconds, 1))
            if after_healthy is not None:
                await after_healthy()
            return health

        if attach is None:
            return await gated()

        tasks = [asyncio.ensure_future(gated()), asyncio.ensure_future(attach(container_id))]
        try:
            health, _ = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return health
