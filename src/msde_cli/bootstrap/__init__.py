"""Bootstrap package for booting the developer stack.

This package provides the `msde-cli up` machinery which:
1. Orders the compose groups of the active features into a BootPlan
2. Starts each group under a supervised deadline
3. Applies feature toggles and post-boot fixups in the running stack
4. Waits for the game server to report healthy
5. Optionally chains to the game import
"""

from .compose import BootPlan, ComposeInvocation, build_boot_plan, build_volume_config
from .features import Feature, sort_features
from .health import HealthCheckResult, HealthWaiter
from .hooks import Hooks, ScriptHook, execute_all, load_hooks
from .patching import ConfigPatcher, TogglePatcher, patch_container_config
from .pipeline import BootPipeline, BootResult
from .stack import StackManager, StackState, StackStatus
from .supervisor import ProcessOutcome, StreamMode, SupervisedProcess, spawn

__all__ = [
    # Features and plan
    "Feature",
    "sort_features",
    "BootPlan",
    "ComposeInvocation",
    "build_boot_plan",
    "build_volume_config",
    # Process supervision
    "StreamMode",
    "SupervisedProcess",
    "ProcessOutcome",
    "spawn",
    # Health polling
    "HealthWaiter",
    "HealthCheckResult",
    # Config patching
    "ConfigPatcher",
    "TogglePatcher",
    "patch_container_config",
    # Pipeline
    "BootPipeline",
    "BootResult",
    # Stack management
    "StackManager",
    "StackState",
    "StackStatus",
    # Hooks
    "Hooks",
    "ScriptHook",
    "load_hooks",
    "execute_all",
]
