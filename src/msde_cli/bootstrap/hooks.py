"""Lifecycle hooks declared in the project's metadata.json.

Hooks are custom scripts that run before the stack boots (pre_run) and after
the games are imported (post_run).
"""

from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import HookFailed
from ..shared.logging import get_logger
from ..shared.paths import metadata_file

logger = get_logger(__name__)

# Set in every hook's environment so scripts can tell they run under the CLI
RUNNER_ENV = "MSDE_CLI_RUNNER"


@dataclass
class ScriptHook:
    """One custom script."""

    cmd: str
    args: list[str] = field(default_factory=list)
    working_directory: Path | None = None
    env_overrides: dict[str, str] = field(default_factory=dict)
    hide_output: bool = False
    continue_on_failure: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScriptHook:
        """Create from a metadata.json hook entry."""
        working_directory = data.get("working_directory")
        return cls(
            cmd=data["cmd"],
            args=[str(arg) for arg in data.get("args") or []],
            working_directory=Path(working_directory) if working_directory else None,
            env_overrides={k: str(v) for k, v in (data.get("env_overrides") or {}).items()},
            hide_output=bool(data.get("hide_output", False)),
            continue_on_failure=bool(data.get("continue_on_failure", False)),
        )

    def execute(self) -> None:
        """Run the script to completion.

        Raises:
            HookFailed: The script could not be spawned, or exited nonzero
                without continue_on_failure.
        """
        env = dict(os.environ)
        env.update(self.env_overrides)
        env[RUNNER_ENV] = "true"
        output = subprocess.DEVNULL if self.hide_output else None

        logger.info("running hook", cmd=self.cmd, args=self.args)
        try:
            result = subprocess.run(
                [self.cmd, *self.args],
                cwd=self.working_directory,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=output,
                stderr=output,
            )
        except OSError as e:
            raise HookFailed(
                message=f"Failed to spawn custom script (command was `{self.cmd}`): {e}",
                data={"cmd": self.cmd},
            ) from e

        if result.returncode == 0:
            return
        if self.continue_on_failure:
            logger.warning("hook failed, continuing", cmd=self.cmd, exit_code=result.returncode)
            return
        raise HookFailed(data={"cmd": self.cmd, "exit_code": result.returncode})


@dataclass
class Hooks:
    """Hooks section of metadata.json."""

    pre_run: list[ScriptHook] = field(default_factory=list)
    post_run: list[ScriptHook] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Hooks:
        return cls(
            pre_run=[ScriptHook.from_dict(h) for h in data.get("pre_run") or []],
            post_run=[ScriptHook.from_dict(h) for h in data.get("post_run") or []],
        )


def load_hooks(project_dir: Path) -> Hooks:
    """Read the hooks section of the project's metadata.json.

    Returns:
        Hooks; empty when the file or the section is missing.
    """
    path = metadata_file(project_dir)
    if not path.exists():
        return Hooks()
    with open(path) as f:
        metadata = json.load(f)
    return Hooks.from_dict(metadata.get("hooks") or {})


def execute_all(hooks: list[ScriptHook]) -> None:
    """Run hooks in order, stopping at the first fatal failure."""
    for hook in hooks:
        hook.execute()
