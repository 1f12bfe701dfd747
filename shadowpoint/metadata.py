#!/usr/bin/env python3
"""Metadata management for checkpoints.

All projects share one JSON document keyed by project id, then by
checkpoint hash. Writers serialise through a lock file and replace the
document atomically; readers never lock.
"""

import json
import logging
import os
import tempfile
import time
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .paths import checkpoint_base as default_checkpoint_base

logger = logging.getLogger(__name__)

STATUS_PENDING = 'pending'
STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'
STATUSES = (STATUS_PENDING, STATUS_SUCCESS, STATUS_FAILED)

FILE_TOOLS = ('Write', 'Edit', 'MultiEdit')


class LockTimeoutError(RuntimeError):
    """The metadata lock stayed held past the wait deadline."""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MetadataLock:
    """Cooperative cross-process lock backed by an exclusively created file.

    Contention is polled every ``interval`` seconds for up to ``max_wait``.
    At the deadline a marker older than ``stale_after`` is taken to be
    abandoned: it is deleted and acquisition retried. A fresh marker makes
    the acquisition fail with ``LockTimeoutError``.
    """

    def __init__(self, lock_file: Path, max_wait: float = 5.0,
                 interval: float = 0.05, stale_after: float = 10.0):
        self.lock_file = Path(lock_file)
        self.max_wait = max_wait
        self.interval = interval
        self.stale_after = stale_after

    def acquire(self) -> None:
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()

        while True:
            try:
                fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                if time.monotonic() - start < self.max_wait:
                    time.sleep(self.interval)
                    continue
                if self._reclaim_stale():
                    continue
                raise LockTimeoutError(
                    f"Timeout waiting for metadata lock {self.lock_file}")
            else:
                os.close(fd)
                return

    def _reclaim_stale(self) -> bool:
        try:
            age = time.time() - self.lock_file.stat().st_mtime
        except FileNotFoundError:
            # Released between our attempt and the stat.
            return True
        if age <= self.stale_after:
            return False
        logger.warning(f"Removing stale metadata lock ({age:.1f}s old)")
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        return True

    def release(self) -> None:
        try:
            self.lock_file.unlink()
        except OSError:
            pass

    def __enter__(self) -> 'MetadataLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()


class CheckpointMetadata:
    """Durable store of checkpoint records."""

    def __init__(self, checkpoint_base: Optional[Path] = None,
                 lock_wait: float = 5.0, lock_stale_after: float = 10.0):
        self.checkpoint_base = Path(checkpoint_base) if checkpoint_base else default_checkpoint_base()
        self.metadata_file = self.checkpoint_base / 'metadata.json'
        self.lock_file = self.checkpoint_base / '.metadata.lock'
        self.lock_wait = lock_wait
        self.lock_stale_after = lock_stale_after

    def lock(self) -> MetadataLock:
        return MetadataLock(self.lock_file, max_wait=self.lock_wait,
                            stale_after=self.lock_stale_after)

    def _load_metadata(self) -> Dict:
        """Read the document; anything unreadable counts as empty."""
        if not self.metadata_file.exists():
            return {}
        try:
            with open(self.metadata_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read checkpoint metadata, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning("Checkpoint metadata is not an object, starting empty")
            return {}
        return data

    def _save_metadata(self, metadata: Dict) -> None:
        """Write to a temp file beside the document, then rename over it."""
        self.checkpoint_base.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.checkpoint_base),
                                        prefix='.metadata', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(metadata, f, indent=2, default=str)
            os.replace(tmp_path, self.metadata_file)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def add_checkpoint(self, project_hash: str, checkpoint_hash: str,
                       tool_name: str, tool_input: Dict, session_id: str) -> Dict:
        """Record a new pending checkpoint."""
        record = {
            'timestamp': utc_now(),
            'tool_name': tool_name,
            'tool_input': tool_input,
            'session_id': session_id,
            'status': STATUS_PENDING,
            'files_affected': extract_files(tool_name, tool_input)
        }
        with self.lock():
            metadata = self._load_metadata()
            metadata.setdefault(project_hash, {})[checkpoint_hash] = record
            self._save_metadata(metadata)
        return record

    def adopt_checkpoint(self, project_hash: str, checkpoint_hash: str, record: Dict) -> bool:
        """Insert a prebuilt record unless one already exists for the hash."""
        with self.lock():
            metadata = self._load_metadata()
            project = metadata.setdefault(project_hash, {})
            if checkpoint_hash in project:
                return False
            project[checkpoint_hash] = record
            self._save_metadata(metadata)
        return True

    def update_checkpoint_status(self, project_hash: str, checkpoint_hash: str,
                                 status: str, tool_response: Optional[Dict] = None) -> bool:
        """Move a checkpoint to its final status.

        Returns False, leaving the document untouched, when no such record
        exists.
        """
        if status not in STATUSES:
            raise ValueError(f"Unknown checkpoint status: {status}")

        with self.lock():
            metadata = self._load_metadata()
            record = metadata.get(project_hash, {}).get(checkpoint_hash)
            if record is None:
                return False
            record['status'] = status
            record['status_updated'] = utc_now()
            if tool_response is not None:
                record['tool_response'] = tool_response
            self._save_metadata(metadata)
        return True

    def get_checkpoint_metadata(self, project_hash: str,
                                checkpoint_hash: str) -> Optional[Dict]:
        return self._load_metadata().get(project_hash, {}).get(checkpoint_hash)

    def project_ids(self) -> List[str]:
        return list(self._load_metadata())

    def list_project_checkpoints(self, project_hash: str) -> List[Dict]:
        """All records of a project, newest first, each with its ``hash``."""
        project = self._load_metadata().get(project_hash, {})
        return _newest_first(project.items())

    def find_checkpoints_by_file(self, project_hash: str, file_path: str) -> List[Dict]:
        return [c for c in self.list_project_checkpoints(project_hash)
                if file_path in c.get('files_affected', [])]

    def cleanup_old_metadata(self, project_hash: str, keep_count: int = 50) -> int:
        """Drop all but the ``keep_count`` most recent records. Returns the number dropped."""
        keep_count = max(0, keep_count)
        with self.lock():
            metadata = self._load_metadata()
            project = metadata.get(project_hash)
            if not project or len(project) <= keep_count:
                return 0
            stale = _newest_first(project.items())[keep_count:]
            for checkpoint in stale:
                del project[checkpoint['hash']]
            self._save_metadata(metadata)
        return len(stale)

    def remove_checkpoints(self, project_hash: str, checkpoint_hashes: Iterable[str]) -> int:
        """Delete the given records of one project. Returns the number deleted."""
        removed = 0
        with self.lock():
            metadata = self._load_metadata()
            project = metadata.get(project_hash, {})
            for checkpoint_hash in checkpoint_hashes:
                if project.pop(checkpoint_hash, None) is not None:
                    removed += 1
            if removed:
                if not project:
                    metadata.pop(project_hash, None)
                self._save_metadata(metadata)
        return removed

    def get_project_stats(self, project_hash: str) -> Dict:
        checkpoints = self.list_project_checkpoints(project_hash)
        statuses = Counter(c.get('status') for c in checkpoints)
        stats = {
            'total_checkpoints': len(checkpoints),
            'successful': statuses[STATUS_SUCCESS],
            'failed': statuses[STATUS_FAILED],
            'pending': statuses[STATUS_PENDING],
        }
        if checkpoints:
            stats['most_modified_files'] = most_modified_files(checkpoints)
            stats['latest_checkpoint'] = checkpoints[0]['timestamp']
        return stats


def _newest_first(items: Iterable[Tuple[str, Dict]]) -> List[Dict]:
    # Equal timestamps keep the later insertion first.
    ordered = []
    for position, (checkpoint_hash, data) in enumerate(items):
        checkpoint = dict(data)
        checkpoint['hash'] = checkpoint_hash
        ordered.append((checkpoint.get('timestamp', ''), position, checkpoint))
    ordered.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
    return [checkpoint for _, _, checkpoint in ordered]


def most_modified_files(checkpoints: List[Dict], limit: int = 5) -> List[Tuple[str, int]]:
    """Most frequent affected files; equal counts keep first-seen order."""
    counts = Counter()
    for checkpoint in checkpoints:
        counts.update(checkpoint.get('files_affected', []))
    return counts.most_common(limit)


def extract_files(tool_name: str, tool_input: Dict) -> List[str]:
    """Paths a file tool is about to touch, in order and without repeats."""
    if tool_name not in FILE_TOOLS or not isinstance(tool_input, dict):
        return []

    files = []
    if tool_input.get('file_path'):
        files.append(tool_input['file_path'])
    for edit in tool_input.get('edits') or []:
        if isinstance(edit, dict) and edit.get('file_path'):
            files.append(edit['file_path'])
    return list(dict.fromkeys(files))
