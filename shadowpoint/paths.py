#!/usr/bin/env python3
"""Filesystem locations and project identity."""

import hashlib
import os
from pathlib import Path
from typing import Union

HOME_ENV = 'SHADOWPOINT_HOME'


def hook_home() -> Path:
    """Directory holding config.json and the checkpoints tree."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / '.claude' / 'hooks' / 'shadowpoint'


def checkpoint_base() -> Path:
    """Root of the metadata document and all shadow repositories."""
    return hook_home() / 'checkpoints'


def project_id(project_path: Union[str, Path]) -> str:
    """Short fingerprint of a project's canonical path.

    The same directory always maps to the same 12 hex characters. A moved
    project gets a new identity and its old partition is left behind.
    """
    resolved = str(Path(project_path).resolve())
    return hashlib.sha256(resolved.encode()).hexdigest()[:12]
