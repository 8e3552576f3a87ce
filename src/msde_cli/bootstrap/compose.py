"""Docker Compose invocations for the boot pipeline.

This module turns a feature set into an ordered BootPlan and generates the
per-run volume configuration that is streamed to the last invocation as an
extra stdin-sourced compose file.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..shared.containers import BOT_SERVICE, PRIMARY_SERVICE
from .features import BASE_COMPOSE_FILE, MAIN_COMPOSE_FILE, Feature, sort_features

# Environment variable that pins the server version in every compose file
VERSION_ENV = "VSN"

# In-container mount points
MSDE_ROOT = "/usr/local/bin/merigo/msde"
BOT_ROOT = "/usr/local/bin/merigo/bot"


@dataclass(frozen=True)
class ComposeInvocation:
    """One `docker compose` call of the boot plan."""

    label: str
    files: tuple[str, ...]
    verb: str = "up"
    detach: bool = True
    build: bool = False
    services: tuple[str, ...] = ()
    inject_volumes: bool = False

    def args(self, docker_dir: Path | None = None) -> list[str]:
        """Build the argv for this invocation.

        Args:
            docker_dir: Directory the compose files live in. When omitted the
                file names are passed through unchanged.

        Returns:
            Full argv starting with `docker compose`.
        """
        args = ["docker", "compose"]
        for file in self.files:
            path = str(docker_dir / file) if docker_dir else file
            args.extend(["-f", path])
        if self.inject_volumes:
            args.extend(["-f", "-"])
        args.append(self.verb)
        if self.detach:
            args.append("-d")
        if self.build:
            args.append("--build")
        args.extend(self.services)
        return args


@dataclass
class BootPlan:
    """Ordered compose invocations for one boot."""

    features: list[Feature]
    invocations: list[ComposeInvocation] = field(default_factory=list)

    @property
    def labels(self) -> list[str]:
        """Labels of the invocations in order."""
        return [inv.label for inv in self.invocations]

    @property
    def includes_main(self) -> bool:
        """Whether the plan ends with the separate main group."""
        return bool(self.invocations) and self.invocations[-1].label == "main"


def build_boot_plan(features: Iterable[Feature], build: bool = False) -> BootPlan:
    """Build the ordered invocation list for a feature set.

    The base group always comes first. The bot group brings up the primary
    service itself, so when BOT is active it takes the volume injection and
    the separate main group is omitted.

    Args:
        features: Active features, any order, duplicates allowed
        build: Pass --build to every invocation

    Returns:
        BootPlan whose last invocation receives the volume configuration.
    """
    ordered = sort_features(features)
    bot_active = Feature.BOT in ordered

    plan = BootPlan(features=ordered)
    plan.invocations.append(
        ComposeInvocation(label="base", files=(BASE_COMPOSE_FILE,), build=build)
    )

    for index, feature in enumerate(ordered):
        is_last = index == len(ordered) - 1
        if is_last and bot_active:
            plan.invocations.append(
                ComposeInvocation(
                    label=feature.value,
                    files=(feature.compose_file,),
                    build=build,
                    services=(PRIMARY_SERVICE,),
                    inject_volumes=True,
                )
            )
        else:
            plan.invocations.append(
                ComposeInvocation(label=feature.value, files=(feature.compose_file,), build=build)
            )

    if not bot_active:
        plan.invocations.append(
            ComposeInvocation(
                label="main",
                files=(MAIN_COMPOSE_FILE,),
                build=build,
                services=(PRIMARY_SERVICE,),
                inject_volumes=True,
            )
        )

    return plan


def build_volume_config(project_dir: Path, features: Iterable[Feature]) -> dict[str, Any]:
    """Generate the per-run volume bindings.

    Only services that exist in the last invocation of the plan are listed,
    otherwise compose rejects the stdin document.

    Args:
        project_dir: Project root on the host
        features: Active features

    Returns:
        Compose-shaped mapping of service name to volume bindings.
    """
    active = set(features)
    project_dir = project_dir.resolve()

    msde_volumes = [
        f"{project_dir / 'games'}:{MSDE_ROOT}/games",
        f"{project_dir / 'merigo-extension' / 'beam_files'}:{MSDE_ROOT}/lib/merigo_extension/ebin",
    ]
    if Feature.OTEL in active:
        msde_volumes.append(f"{project_dir / 'docker' / 'certs'}:{MSDE_ROOT}/certs:ro")

    services: dict[str, Any] = {PRIMARY_SERVICE: {"volumes": msde_volumes}}

    if Feature.BOT in active:
        services[BOT_SERVICE] = {
            "volumes": [f"{project_dir / 'bots'}:{BOT_ROOT}/scripts"],
        }

    return {"services": services}


def render_volume_config(config: dict[str, Any]) -> bytes:
    """Serialize the volume configuration for `-f -`."""
    return yaml.dump(config, default_flow_style=False, sort_keys=False).encode()
