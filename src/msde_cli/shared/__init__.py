"""Shared modules for msde-cli.

Path layout of the tool state and the project directory, and the logging
setup used by every command.
"""

from .logging import configure_logging, get_logger
from .paths import (
    CONFIG_FILE,
    MSDE_DIR,
    compose_log_file,
    default_project_dir,
    docker_dir,
    log_dir,
    metadata_file,
    stages_file,
)

__all__ = [
    # Paths
    "MSDE_DIR",
    "CONFIG_FILE",
    "default_project_dir",
    "docker_dir",
    "log_dir",
    "compose_log_file",
    "metadata_file",
    "stages_file",
    # Logging
    "configure_logging",
    "get_logger",
]
