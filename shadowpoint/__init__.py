#!/usr/bin/env python3
"""
Shadow-repository checkpoints for editor hooks.
Snapshots a project before file modifications so any edit can be undone.
"""

__version__ = "2.0.0"

from .config import CheckpointConfig
from .metadata import CheckpointMetadata, LockTimeoutError
from .orchestrator import CheckpointOrchestrator, HookOutcome
from .shadow import ShadowRepository

__all__ = [
    "CheckpointConfig",
    "CheckpointMetadata",
    "CheckpointOrchestrator",
    "HookOutcome",
    "LockTimeoutError",
    "ShadowRepository",
]
