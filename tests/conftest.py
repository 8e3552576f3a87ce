"""Shared test fixtures for msde-cli tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from msde_cli.config import CLIConfig
from msde_cli.context import Context
from tests.mocks import FakeChannel


@pytest.fixture
def fake_channel() -> FakeChannel:
    """Channel that answers every call with :ok."""
    return FakeChannel()


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Empty project directory."""
    (tmp_path / "docker").mkdir()
    return tmp_path


@pytest.fixture
def context(project_dir: Path) -> Context:
    """Context over a mocked runtime and a fake channel."""
    runtime = MagicMock()
    runtime.close = AsyncMock()
    runtime.running_containers = AsyncMock(return_value={"msde-vm-dev": "msde-id"})
    runtime.health_status = AsyncMock(return_value="healthy")
    config = CLIConfig(project_dir=project_dir, version="1.2.3")
    return Context(config=config, runtime=runtime, channel=FakeChannel())
