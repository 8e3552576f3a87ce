"""CLI configuration management.

Handles CLI configuration stored in ~/.msde/config.yaml.
Supports environment variable overrides and CLI flag precedence.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .shared.paths import CONFIG_FILE, PROJECT_DIR_ENV, default_project_dir

# Default values
DEFAULT_VERSION = "latest"
DEFAULT_DOCKER_SOCKET = "/var/run/docker.sock"
DEFAULT_TIMEOUT = 300

# Environment variable mappings
ENV_VARS = {
    "project_dir": PROJECT_DIR_ENV,
    "version": "MSDE_VERSION",
    "docker_socket": "DOCKER_SOCKET",
    "timeout": "MSDE_TIMEOUT",
}


@dataclass
class CLIConfig:
    """CLI configuration."""

    project_dir: Path = field(default_factory=default_project_dir)
    version: str = DEFAULT_VERSION
    docker_socket: str = DEFAULT_DOCKER_SOCKET
    timeout: int = DEFAULT_TIMEOUT

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")


def get_config_path() -> Path:
    """Get the CLI config file path.

    Returns:
        Path to ~/.msde/config.yaml
    """
    return CONFIG_FILE


def load_config(config_path: Path | None = None) -> CLIConfig:
    """Load CLI configuration.

    Precedence (highest to lowest):
    1. Environment variables
    2. Config file (~/.msde/config.yaml)
    3. Defaults

    Args:
        config_path: Override for the config file location

    Returns:
        CLIConfig with values and sources
    """
    config = CLIConfig()
    sources: dict[str, str] = {key: "default" for key in ENV_VARS}

    path = config_path or get_config_path()
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}

        if "project_dir" in file_config:
            config.project_dir = Path(str(file_config["project_dir"])).expanduser()
            sources["project_dir"] = "config file"
        if "version" in file_config:
            config.version = str(file_config["version"])
            sources["version"] = "config file"
        if "docker_socket" in file_config:
            config.docker_socket = str(file_config["docker_socket"])
            sources["docker_socket"] = "config file"
        if "timeout" in file_config:
            config.timeout = int(file_config["timeout"])
            sources["timeout"] = "config file"

    # Override with environment variables
    if os.environ.get(ENV_VARS["project_dir"]):
        config.project_dir = Path(os.environ[ENV_VARS["project_dir"]])
        sources["project_dir"] = "environment"
    if os.environ.get(ENV_VARS["version"]):
        config.version = os.environ[ENV_VARS["version"]]
        sources["version"] = "environment"
    if os.environ.get(ENV_VARS["docker_socket"]):
        config.docker_socket = os.environ[ENV_VARS["docker_socket"]]
        sources["docker_socket"] = "environment"
    if os.environ.get(ENV_VARS["timeout"]):
        try:
            config.timeout = int(os.environ[ENV_VARS["timeout"]])
            sources["timeout"] = "environment"
        except ValueError:
            pass

    config._sources = sources
    return config
