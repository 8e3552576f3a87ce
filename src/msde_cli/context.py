"""Per-process state shared by every command.

Built once by the command group and passed explicitly to the boot pipeline,
the sync engine and the upgrade dispatcher.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import CLIConfig
from .remote.channel import RemoteChannel
from .remote.runtime import DockerClient
from .shared.paths import metadata_file

# metadata.json keys
PROJECT_VERSION_KEY = "version"
TARGET_VERSION_KEY = "target_msde_version"


@dataclass
class Context:
    """Explicit context for one CLI invocation."""

    config: CLIConfig
    runtime: DockerClient
    channel: RemoteChannel
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: CLIConfig, runtime: DockerClient | None = None) -> Context:
        """Build the context, reading the project's metadata.json if present."""
        runtime = runtime or DockerClient(config.docker_socket)
        return cls(
            config=config,
            runtime=runtime,
            channel=RemoteChannel(runtime),
            metadata=read_metadata(config.project_dir),
        )

    @property
    def project_dir(self) -> Path:
        return self.config.project_dir

    @property
    def version(self) -> str:
        """Server version pinned for compose.

        An explicit setting wins over the project's target version.
        """
        if self.config.get_source("version") == "default" and self.metadata.get(TARGET_VERSION_KEY):
            return str(self.metadata[TARGET_VERSION_KEY])
        return self.config.version

    @property
    def project_version(self) -> str | None:
        """Package version the project was created or last upgraded with."""
        value = self.metadata.get(PROJECT_VERSION_KEY)
        return str(value) if value else None

    def write_project_version(self, version: str) -> None:
        """Record a new package version in metadata.json."""
        self.metadata[PROJECT_VERSION_KEY] = version
        path = metadata_file(self.project_dir)
        path.write_text(json.dumps(self.metadata, indent=2) + "\n")

    async def close(self) -> None:
        await self.runtime.close()


def read_metadata(project_dir: Path) -> dict[str, Any]:
    """Load metadata.json, or an empty mapping when it is missing."""
    path = metadata_file(project_dir)
    if not path.exists():
        return {}
    with open(path) as f:
        return json.load(f)
