"""Path management for msde-cli.

Two roots matter: ~/.msde/ for tool state and the developer package
project directory for everything the stack mounts or logs.
"""

import os
from pathlib import Path

# Base directory for tool state
MSDE_DIR = Path.home() / ".msde"

# CLI config file
CONFIG_FILE = MSDE_DIR / "config.yaml"

# Environment variable that pins the project directory
PROJECT_DIR_ENV = "MERIGO_DEV_PACKAGE_DIR"

# Default project directory when the variable is unset
DEFAULT_PROJECT_DIR = Path.home() / "merigo"

# Name of the diagnostic log written on compose failures
COMPOSE_LOG_NAME = "msde-cli-compose.log"


def default_project_dir() -> Path:
    """Resolve the project directory from the environment.

    Returns:
        Path from MERIGO_DEV_PACKAGE_DIR, or ~/merigo
    """
    value = os.environ.get(PROJECT_DIR_ENV)
    if value:
        return Path(value)
    return DEFAULT_PROJECT_DIR


def docker_dir(project_dir: Path) -> Path:
    """Directory holding the compose files."""
    return project_dir / "docker"


def log_dir(project_dir: Path) -> Path:
    """Directory holding diagnostic logs."""
    return project_dir / "log"


def compose_log_file(project_dir: Path) -> Path:
    """Get path to the compose diagnostic log.

    Args:
        project_dir: Project root

    Returns:
        Path to <project>/log/msde-cli-compose.log
    """
    return log_dir(project_dir) / COMPOSE_LOG_NAME


def metadata_file(project_dir: Path) -> Path:
    """Path to the project's metadata.json."""
    return project_dir / "metadata.json"


def stages_file(project_dir: Path) -> Path:
    """Path to the project's games/stages.yml."""
    return project_dir / "games" / "stages.yml"
