"""Game stage model and the import/sync engine."""

from .engine import JobState, SyncEngine, SyncJob, SyncReport
from .stages import (
    StageConfig,
    Stages,
    load_local_stages,
    merge_stages,
    parse_remote_stages,
)

__all__ = [
    "StageConfig",
    "Stages",
    "load_local_stages",
    "parse_remote_stages",
    "merge_stages",
    "SyncEngine",
    "SyncJob",
    "SyncReport",
    "JobState",
]
