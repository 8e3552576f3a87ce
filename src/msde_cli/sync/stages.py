"""Game stage model.

A stages document lists deployable content units. Each unit belongs to a
game (guid) and is identified within it by a stage id (suid).
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from ..errors import ProtocolViolation
from ..shared.paths import stages_file


@dataclass
class StageConfig:
    """One deployable stage of a game."""

    guid: str
    suid: str
    name: str = ""
    launch: bool = False
    script_link: str = ""
    tuning_link: str = ""
    macros_enabled: bool = False
    evmlistener: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StageConfig:
        """Create from a stages document entry.

        Raises:
            ValueError: guid or suid is missing.
        """
        if not data.get("guid") or not data.get("suid"):
            raise ValueError(f"Stage entry is missing guid or suid: {data!r}")
        return cls(
            guid=str(data["guid"]),
            suid=str(data["suid"]),
            name=data.get("name", ""),
            launch=bool(data.get("launch", False)),
            script_link=(data.get("script") or {}).get("link", ""),
            tuning_link=(data.get("tuning") or {}).get("link", ""),
            macros_enabled=bool(data.get("macrosEnabled", False)),
            evmlistener=bool(data.get("evmlistener", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stages document shape."""
        return {
            "guid": self.guid,
            "suid": self.suid,
            "name": self.name,
            "launch": self.launch,
            "script": {"link": self.script_link},
            "tuning": {"link": self.tuning_link},
            "macrosEnabled": self.macros_enabled,
            "evmlistener": self.evmlistener,
        }


@dataclass
class Stages:
    """All stages of one game."""

    guid: str
    stages: list[StageConfig] = field(default_factory=list)

    @property
    def launched(self) -> list[StageConfig]:
        """Stages flagged for launch."""
        return [stage for stage in self.stages if stage.launch]

    def to_json(self) -> str:
        """Serialize for submission to the game server."""
        return json.dumps({"stages": [stage.to_dict() for stage in self.stages]})


def group_by_guid(stages: Iterable[StageConfig]) -> list[Stages]:
    """Group stage entries by game, keeping first-seen game order."""
    groups: dict[str, Stages] = {}
    for stage in stages:
        groups.setdefault(stage.guid, Stages(guid=stage.guid)).stages.append(stage)
    return list(groups.values())


def _entries(document: Any) -> list[dict[str, Any]]:
    if document is None:
        return []
    if isinstance(document, dict):
        document = document.get("stages") or []
    if not isinstance(document, list):
        raise ValueError("Stages document must be a list or a mapping with a 'stages' list")
    return document


def load_local_stages(project_dir: Path) -> list[Stages]:
    """Load games/stages.yml from the project directory.

    Returns:
        Stages grouped by game; empty when the file does not exist.
    """
    path = stages_file(project_dir)
    if not path.exists():
        return []
    with open(path) as f:
        document = yaml.safe_load(f)
    return group_by_guid(StageConfig.from_dict(entry) for entry in _entries(document))


def parse_remote_stages(text: str) -> list[Stages]:
    """Parse the stage configuration reported by the game server.

    Raises:
        ProtocolViolation: The text is not a valid stages document.
    """
    try:
        document = json.loads(text) if text.strip() else None
        return group_by_guid(StageConfig.from_dict(entry) for entry in _entries(document))
    except ValueError as e:
        raise ProtocolViolation(
            message=f"Invalid stage configuration from the game server: {e}",
            data={"text": text[:200]},
        ) from e


def dedupe_by_suid(stages: Iterable[StageConfig]) -> list[StageConfig]:
    """Keep one entry per suid; a later entry replaces an earlier one in place."""
    unique: dict[str, StageConfig] = {}
    for stage in stages:
        unique[stage.suid] = stage
    return list(unique.values())


def merge_stages(local: Iterable[Stages], remote: Iterable[Stages]) -> list[Stages]:
    """Merge remote and local stages by game.

    Lists sharing a guid are concatenated remote first, so local definitions
    win when both sides define the same suid.

    Args:
        local: Stages from the project directory
        remote: Stages already known to the game server

    Returns:
        One Stages per game with unique suids.
    """
    merged: dict[str, list[StageConfig]] = {}
    for group in [*remote, *local]:
        merged.setdefault(group.guid, []).extend(group.stages)
    return [Stages(guid=guid, stages=dedupe_by_suid(stages)) for guid, stages in merged.items()]
