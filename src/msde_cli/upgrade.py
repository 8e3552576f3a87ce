"""Project upgrades between package versions.

Upgrades are only defined between consecutive minor versions and chained
together; patch versions never carry migrations. A step is either automatic
(runs code) or manual (prints an instruction for the user).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import click

from .shared.logging import get_logger

if TYPE_CHECKING:
    from .context import Context

logger = get_logger(__name__)

_VERSION = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True, order=True)
class Version:
    """major.minor.patch version; pre-release and build suffixes are ignored."""

    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, value: str) -> Version:
        match = _VERSION.match(value.strip())
        if not match:
            raise ValueError(f"Invalid version: {value!r}")
        return cls(*(int(part) for part in match.groups()))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass
class AutomaticStep:
    """Step that runs code against the context."""

    func: Callable[[Context], None]

    def perform(self, ctx: Context, manual_only: bool) -> None:
        if not manual_only:
            self.func(ctx)


@dataclass
class ManualStep:
    """Step that tells the user what to do."""

    message: str

    def perform(self, ctx: Context, manual_only: bool) -> None:
        click.echo(self.message)


@dataclass
class UpgradePipeline:
    """Ordered upgrade steps."""

    steps: list[AutomaticStep | ManualStep] = field(default_factory=list)

    def push_auto(self, func: Callable[[Context], None]) -> None:
        self.steps.append(AutomaticStep(func))

    def push_manual(self, message: str) -> None:
        self.steps.append(ManualStep(message))

    def extend(self, other: UpgradePipeline) -> None:
        self.steps.extend(other.steps)

    def run(self, ctx: Context, manual_only: bool = False) -> None:
        """Perform every step; automatic ones are skipped when manual_only."""
        for step in self.steps:
            step.perform(ctx, manual_only)


def default_version_writer(version: Version) -> UpgradePipeline:
    """Pipeline that records the new version in metadata.json."""
    pipeline = UpgradePipeline()
    pipeline.push_auto(lambda ctx: ctx.write_project_version(str(version)))
    return pipeline


def consecutive_upgrade(lower: Version, upper: Version) -> UpgradePipeline | None:
    """Upgrade between two consecutive minor versions.

    Returns:
        The registered pipeline, or None when no migration is needed or the
        pair is unknown (logged).
    """
    pair = ((lower.major, lower.minor), (upper.major, upper.minor))
    if pair == ((0, 13), (0, 14)):
        pipeline = UpgradePipeline()
        pipeline.push_manual(
            "Compose files moved to package/docker. Re-run `msde-cli up` to recreate the stack."
        )
        return pipeline
    if lower.major == upper.major == 0 and upper.minor < 13:
        return None
    if (upper.major, upper.minor) == (lower.major, lower.minor):
        return None
    logger.error("unexpected version pair", current=str(upper), project=str(lower))
    return None


def get_upgrade_path(start: Version, end: Version) -> list[tuple[Version, Version]]:
    """Split an upgrade into consecutive minor version steps."""
    path: list[tuple[Version, Version]] = []
    current = start
    while current < end:
        if (current.major, current.minor) == (end.major, end.minor):
            following = end
        else:
            following = Version(current.major, current.minor + 1, 0)
        path.append((current, following))
        current = following
    return path


def upgrade_project(
    current: Version,
    project: Version,
    ctx: Context,
    manual_only: bool = False,
) -> bool:
    """Upgrade the project from its recorded version to the CLI's version.

    Args:
        current: Version of this CLI
        project: Version recorded in the project's metadata.json
        ctx: Command context
        manual_only: Only print manual steps

    Returns:
        True if an upgrade ran.
    """
    if current < project:
        logger.info(
            "You're trying to downgrade the project. Consider installing an older version of msde-cli."
        )
        return False
    if current == project:
        logger.info("Up to date.")
        return False

    logger.info("upgrading project", project=str(project), current=str(current))
    pipeline = default_version_writer(current)
    for lower, upper in get_upgrade_path(project, current):
        step = consecutive_upgrade(lower, upper)
        if step is not None:
            pipeline.extend(step)
    pipeline.run(ctx, manual_only)
    return True
