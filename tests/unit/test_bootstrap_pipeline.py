"""Unit tests for the boot pipeline."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from msde_cli.bootstrap import BootPipeline, Feature, HealthCheckResult
from msde_cli.bootstrap.pipeline import (
    METRICS_INIT_COMMAND,
    RELOAD_CONFIG_EXPR,
    TRACING_OFF_EXPR,
    WEB3_REGISTRY_STEPS,
)
from msde_cli.bootstrap.supervisor import ProcessOutcome, StreamMode
from msde_cli.remote import RemoteChannel, StreamKind
from msde_cli.errors import (
    ContainerNotRunning,
    HealthCheckFailed,
    ProcessFailure,
    ProtocolViolation,
)

from tests.mocks import FakeChannel


def fake_process(args: list[str], exit_code: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.write_input = AsyncMock()
    proc.wait_with_deadline = AsyncMock(
        return_value=ProcessOutcome(args=args, exit_code=exit_code, elapsed_seconds=0.1)
    )
    return proc


def health_waiter(healthy: bool = True) -> MagicMock:
    waiter = MagicMock()
    waiter.wait_healthy = AsyncMock(
        return_value=HealthCheckResult(
            healthy=healthy,
            status="healthy" if healthy else "unhealthy",
            attempts=1,
            error=None if healthy else "container reported unhealthy",
        )
    )
    return waiter


def runtime_with_exit_codes(runtime: MagicMock, exit_codes: dict[str, int]) -> MagicMock:
    """Give a mocked runtime exec sessions that exit per program name."""
    runtime.running_containers = AsyncMock(
        return_value={
            "msde-vm-dev": "msde-id",
            "grafana-vm-dev": "grafana-id",
            "web3-vm-dev": "web3-id",
        }
    )
    programs: dict[str, str] = {}

    async def exec_create(container_id, cmd, tty=True, privileged=True):
        exec_id = f"exec-{len(programs)}"
        programs[exec_id] = cmd[0]
        return exec_id

    async def exec_start(exec_id, tty=True):
        yield StreamKind.STDOUT, b":ok"

    async def exec_exit_code(exec_id):
        return exit_codes.get(programs[exec_id], 0)

    runtime.exec_create = exec_create
    runtime.exec_start = exec_start
    runtime.exec_exit_code = exec_exit_code
    return runtime


@pytest.fixture
def spawned():
    """Patch spawn and collect the processes it hands out."""
    processes: list[MagicMock] = []

    async def fake_spawn(args, **kwargs):
        proc = fake_process(args)
        proc.spawn_kwargs = kwargs
        processes.append(proc)
        return proc

    with (
        patch("msde_cli.bootstrap.pipeline.spawn", side_effect=fake_spawn) as spawn,
        patch(
            "msde_cli.bootstrap.pipeline.patch_container_config", new=AsyncMock(return_value=True)
        ),
    ):
        spawn.processes = processes
        yield spawn


def pipeline_for(context, waiter=None) -> BootPipeline:
    return BootPipeline(context, health_waiter=waiter or health_waiter(), tracing_off_delay=0)


class TestBoot:
    """Tests for BootPipeline.boot."""

    @pytest.mark.asyncio
    async def test_groups_start_in_order(self, context, spawned):
        """Compose groups run base first and main last."""
        result = await pipeline_for(context).boot([Feature.WEB3, Feature.METRICS], timeout=30)

        assert result.plan.labels == ["base", "metrics", "web3", "main"]
        assert spawned.call_count == 4
        first_args = spawned.call_args_list[0].args[0]
        assert first_args[:2] == ["docker", "compose"]
        assert first_args[-2:] == ["up", "-d"]
        assert result.health.healthy

    @pytest.mark.asyncio
    async def test_volumes_go_to_last_group_only(self, context, spawned):
        """Only the last invocation reads the volume config from stdin."""
        await pipeline_for(context).boot([Feature.METRICS], timeout=30)

        *earlier, last = spawned.processes
        for proc in earlier:
            proc.write_input.assert_not_awaited()
            assert proc.spawn_kwargs["with_input"] is False
        assert last.spawn_kwargs["with_input"] is True
        volumes = last.write_input.await_args.args[0]
        assert b"msde-vm-dev" in volumes

    @pytest.mark.asyncio
    async def test_version_and_output_mode(self, context, spawned):
        """Compose sees VSN; raw passes output through."""
        await pipeline_for(context).boot([], timeout=30, raw=True)

        kwargs = spawned.processes[0].spawn_kwargs
        assert kwargs["env"] == {"VSN": "1.2.3"}
        assert kwargs["stdout"] is StreamMode.INHERIT
        assert kwargs["cwd"] == context.project_dir

    @pytest.mark.asyncio
    async def test_deadline_per_group(self, context, spawned):
        """Each group gets the full timeout."""
        await pipeline_for(context).boot([], timeout=42)

        for proc in spawned.processes:
            proc.wait_with_deadline.assert_awaited_once_with(42)

    @pytest.mark.asyncio
    async def test_group_failure_stops_the_boot(self, context, spawned):
        """A failed group aborts before post-boot steps."""
        failing = fake_process(["docker"])
        failing.wait_with_deadline = AsyncMock(side_effect=ProcessFailure(exit_code=1))

        async def spawn_failing(args, **kwargs):
            return failing

        spawned.side_effect = spawn_failing

        with pytest.raises(ProcessFailure):
            await pipeline_for(context).boot([], timeout=30)

        assert context.channel.calls == []

    @pytest.mark.asyncio
    async def test_post_boot_steps(self, context, spawned):
        """Metrics and web3 groups get their container fixups."""
        await pipeline_for(context).boot([Feature.METRICS, Feature.WEB3], timeout=30)

        assert context.channel.execs[0] == ("grafana-vm-dev", METRICS_INIT_COMMAND)
        web3 = [command for name, command in context.channel.execs if name == "web3-vm-dev"]
        assert web3 == [command for _, command in WEB3_REGISTRY_STEPS]
        assert RELOAD_CONFIG_EXPR in context.channel.calls

    @pytest.mark.asyncio
    async def test_web3_step_failure_is_a_warning(self, context, spawned):
        """A failed registry call does not abort the boot."""
        context.channel.exec_in = AsyncMock(side_effect=ProtocolViolation(message="curl failed"))

        result = await pipeline_for(context).boot([Feature.WEB3], timeout=30)

        assert len(result.warnings) == len(WEB3_REGISTRY_STEPS)
        assert result.health.healthy

    @pytest.mark.asyncio
    async def test_web3_nonzero_exit_is_a_warning(self, context, spawned):
        """A registry call exiting nonzero is reported and the boot goes on."""
        context.channel = RemoteChannel(runtime_with_exit_codes(context.runtime, {"curl": 22}))

        result = await pipeline_for(context).boot([Feature.WEB3], timeout=30)

        assert len(result.warnings) == len(WEB3_REGISTRY_STEPS)
        assert all("exited with code 22" in warning for warning in result.warnings)
        assert result.health.healthy

    @pytest.mark.asyncio
    async def test_metrics_nonzero_exit_aborts(self, context, spawned):
        """A failing metrics init stops the boot."""
        context.channel = RemoteChannel(
            runtime_with_exit_codes(context.runtime, {"grafana-cli": 1})
        )
        waiter = health_waiter()

        with pytest.raises(ProcessFailure) as exc_info:
            await pipeline_for(context, waiter).boot([Feature.METRICS], timeout=30)

        assert exc_info.value.exit_code == 1
        waiter.wait_healthy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tracing_disabled_without_otel(self, context, spawned):
        """Without OTEL the exporter is stopped after boot."""
        await pipeline_for(context).boot([], timeout=30)
        assert TRACING_OFF_EXPR in context.channel.calls

    @pytest.mark.asyncio
    async def test_tracing_kept_with_otel(self, context, spawned):
        """With OTEL tracing stays on."""
        await pipeline_for(context).boot([Feature.OTEL], timeout=30)
        assert TRACING_OFF_EXPR not in context.channel.calls

    @pytest.mark.asyncio
    async def test_unhealthy_server_fails(self, context, spawned):
        """An unhealthy primary service aborts and skips after_healthy."""
        after_healthy = AsyncMock()

        with pytest.raises(HealthCheckFailed):
            await pipeline_for(context, health_waiter(healthy=False)).boot(
                [], timeout=30, after_healthy=after_healthy
            )

        after_healthy.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_after_healthy_runs_after_health(self, context, spawned):
        """after_healthy only runs once health is confirmed."""
        order: list[str] = []
        waiter = health_waiter()
        result = waiter.wait_healthy.return_value

        async def wait_healthy(*args, **kwargs):
            order.append("health")
            return result

        async def after_healthy():
            order.append("after")

        waiter.wait_healthy = AsyncMock(side_effect=wait_healthy)
        await pipeline_for(context, waiter).boot([], timeout=30, after_healthy=after_healthy)

        assert order == ["health", "after"]

    @pytest.mark.asyncio
    async def test_attach_runs_alongside(self, context, spawned):
        """The log follower receives the primary container id."""
        attached: list[str] = []

        async def attach(container_id: str) -> None:
            attached.append(container_id)

        await pipeline_for(context).boot([], timeout=30, attach=attach)

        assert attached == ["msde-id"]

    @pytest.mark.asyncio
    async def test_attach_cancelled_on_failure(self, context, spawned):
        """A failed health check stops the log follower."""
        follower_cancelled = asyncio.Event()

        async def attach(container_id: str) -> None:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                follower_cancelled.set()
                raise

        with pytest.raises(HealthCheckFailed):
            await pipeline_for(context, health_waiter(healthy=False)).boot(
                [], timeout=30, attach=attach
            )

        assert follower_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_server_missing_after_boot(self, context, spawned):
        """A primary container that never appeared is reported."""
        context.channel = FakeChannel(containers={})

        with pytest.raises(ContainerNotRunning) as exc_info:
            await pipeline_for(context).boot([], timeout=30)

        assert exc_info.value.container == "msde-vm-dev"
