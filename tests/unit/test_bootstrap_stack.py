"""Unit tests for stack management."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from msde_cli.bootstrap import StackManager, StackState
from msde_cli.bootstrap.supervisor import ProcessOutcome


@pytest.fixture
def spawn():
    proc = MagicMock()
    proc.wait_with_deadline = AsyncMock(
        return_value=ProcessOutcome(args=[], exit_code=0, elapsed_seconds=0.1)
    )
    with patch("msde_cli.bootstrap.stack.spawn", new=AsyncMock(return_value=proc)) as mock:
        yield mock


class TestStackManagerCompose:
    """Tests for stop and down."""

    @pytest.mark.asyncio
    async def test_stop(self, context, spawn):
        """stop keeps containers."""
        await StackManager(context).stop(timeout=20)

        assert spawn.await_args.args[0] == ["docker", "compose", "-p", "docker", "stop"]
        spawn.return_value.wait_with_deadline.assert_awaited_once_with(20)

    @pytest.mark.asyncio
    async def test_down_removes_volumes(self, context, spawn):
        """down removes containers and volumes."""
        await StackManager(context).down(timeout=20)

        assert spawn.await_args.args[0][-2:] == ["down", "--volumes"]
        assert spawn.await_args.kwargs["env"] == {"VSN": "1.2.3"}


class TestStackManagerStatus:
    """Tests for StackManager.status."""

    @pytest.mark.asyncio
    async def test_running(self, context):
        """Healthy primary service means running."""
        context.runtime.running_containers = AsyncMock(
            return_value={"msde-vm-dev": "msde-id", "grafana-vm-dev": "g-id", "other": "x"}
        )

        status = await StackManager(context).status()

        assert status.state is StackState.RUNNING
        assert status.running_services == ["grafana-vm-dev", "msde-vm-dev"]
        context.runtime.health_status.assert_awaited_once_with("msde-id")

    @pytest.mark.asyncio
    async def test_stopped(self, context):
        """No primary container means stopped."""
        context.runtime.running_containers = AsyncMock(return_value={})

        status = await StackManager(context).status()

        assert status.state is StackState.STOPPED
        assert "msde-vm-dev" in status.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "health, state",
        [
            ("unhealthy", StackState.UNHEALTHY),
            ("starting", StackState.STARTING),
            (None, StackState.STARTING),
        ],
    )
    async def test_health_states(self, context, health, state):
        """Health status maps onto the stack state."""
        context.runtime.health_status = AsyncMock(return_value=health)

        status = await StackManager(context).status()

        assert status.state is state
        assert status.health == health
