#!/usr/bin/env python3
"""Retention and repair passes over checkpoint metadata.

Only metadata records and whole shadow directories are ever removed; the
commits inside a shadow history are left alone.
"""

import logging
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from .metadata import STATUS_PENDING, CheckpointMetadata

if TYPE_CHECKING:
    from .shadow import ShadowRepository

logger = logging.getLogger(__name__)

PROJECT_ID_LENGTH = 12


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as local time."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def expired_hashes(checkpoints: List[Dict], retention_days: int,
                   now: Optional[datetime] = None) -> List[str]:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    expired = []
    for checkpoint in checkpoints:
        created = parse_timestamp(checkpoint.get('timestamp', ''))
        if created is None:
            logger.warning(f"Checkpoint {checkpoint.get('hash', 'unknown')[:8]} has no "
                           f"usable timestamp, keeping it")
            continue
        if created < cutoff:
            expired.append(checkpoint['hash'])
    return expired


def expire_project(metadata: CheckpointMetadata, project_hash: str, retention_days: int,
                   dry_run: bool = False, now: Optional[datetime] = None) -> List[str]:
    """Drop records older than ``retention_days``. Returns the affected hashes."""
    expired = expired_hashes(metadata.list_project_checkpoints(project_hash),
                             retention_days, now)
    if expired and not dry_run:
        metadata.remove_checkpoints(project_hash, expired)
    return expired


def expire_all(metadata: CheckpointMetadata, retention_days: int, dry_run: bool = False,
               now: Optional[datetime] = None) -> Dict[str, List[str]]:
    results = {}
    for project_hash in metadata.project_ids():
        expired = expire_project(metadata, project_hash, retention_days, dry_run, now)
        if expired:
            results[project_hash] = expired
    return results


def find_orphaned_repos(checkpoint_base: Path, metadata: CheckpointMetadata) -> List[Path]:
    """Shadow directories whose project has no records left."""
    if not checkpoint_base.is_dir():
        return []
    known = set(metadata.project_ids())
    return sorted(
        entry for entry in checkpoint_base.iterdir()
        if entry.is_dir() and len(entry.name) == PROJECT_ID_LENGTH and entry.name not in known
    )


def remove_orphaned_repos(checkpoint_base: Path, metadata: CheckpointMetadata,
                          dry_run: bool = False) -> List[Path]:
    orphans = find_orphaned_repos(checkpoint_base, metadata)
    if not dry_run:
        for repo in orphans:
            logger.info(f"Removing orphaned checkpoint repo {repo.name}")
            shutil.rmtree(repo)
    return orphans


def repair_metadata(shadow: 'ShadowRepository', metadata: CheckpointMetadata,
                    retention_days: Optional[int] = None,
                    now: Optional[datetime] = None) -> List[str]:
    """Record checkpoint commits that never made it into the metadata.

    This happens when a process dies, or the lock times out, between the
    commit and the metadata write. The commit note supplies the tool name,
    session and files; the envelope supplies the timestamp. Commits older
    than ``retention_days`` stay unrecorded so expired checkpoints do not
    come back.
    """
    cutoff = None
    if retention_days is not None:
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
    known = {c['hash'] for c in metadata.list_project_checkpoints(shadow.project_hash)}
    adopted = []
    for commit in shadow.checkpoint_commits():
        if commit['hash'] in known:
            continue
        created = parse_timestamp(commit['timestamp'])
        if cutoff is not None and (created is None or created < cutoff):
            continue
        note = shadow.read_note(commit['hash'])
        files = list(note.get('files') or [])
        record = {
            'timestamp': commit['timestamp'],
            'tool_name': note.get('tool_name', ''),
            'tool_input': {'file_path': files[0]} if files else {},
            'session_id': note.get('session_id', ''),
            'status': STATUS_PENDING,
            'files_affected': files,
            'recovered': True,
        }
        if metadata.adopt_checkpoint(shadow.project_hash, commit['hash'], record):
            adopted.append(commit['hash'])
    return adopted
