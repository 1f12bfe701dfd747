#!/usr/bin/env python3
"""Mirror files between a project tree and its shadow worktree.

Ignore handling is intentionally simple: a path is skipped when any line of
the source tree's .gitignore occurs as a substring of its relative path.
This is not gitignore glob semantics.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)

IGNORE_FILE = '.gitignore'
PROGRESS_EVERY = 100


@dataclass
class SyncReport:
    copied: int = 0
    removed: List[str] = field(default_factory=list)


def read_ignore_patterns(root: Path) -> List[str]:
    """Patterns from ``root/.gitignore``, without blanks and comments."""
    ignore_path = root / IGNORE_FILE
    if not ignore_path.is_file():
        return []
    try:
        lines = ignore_path.read_text(encoding='utf-8', errors='replace').splitlines()
    except OSError as e:
        logger.warning(f"Could not read {ignore_path}: {e}")
        return []
    return [line.strip() for line in lines if line.strip() and not line.startswith('#')]


def is_hidden(name: str) -> bool:
    return name.startswith('.') and name != IGNORE_FILE


def is_ignored(rel_path: str, patterns: List[str]) -> bool:
    return any(pattern in rel_path for pattern in patterns)


def collect_files(root: Path, patterns: List[str]) -> List[str]:
    """Relative POSIX paths of every file that takes part in a mirror."""
    files = []

    def walk(current: Path):
        for item in sorted(current.iterdir()):
            if is_hidden(item.name):
                continue
            rel = item.relative_to(root).as_posix()
            if is_ignored(rel, patterns):
                continue
            if item.is_dir() and not item.is_symlink():
                walk(item)
            elif item.is_file():
                files.append(rel)

    if root.is_dir():
        walk(root)
    return files


def _existing_files(root: Path) -> Set[str]:
    found = set()

    def walk(current: Path):
        for item in current.iterdir():
            if item.name.startswith('.'):
                continue
            if item.is_dir() and not item.is_symlink():
                walk(item)
            else:
                found.add(item.relative_to(root).as_posix())

    if root.is_dir():
        walk(root)
    return found


def mirror_tree(src: Path, dst: Path, prune: bool = False,
                protect: Optional[Callable[[List[str]], Iterable[str]]] = None) -> SyncReport:
    """Copy the eligible files of ``src`` over ``dst``.

    Existing destination files are overwritten. With ``prune`` set, visible
    destination files that have no counterpart in ``src`` are deleted and any
    directories left empty are removed. ``protect`` receives the deletion
    candidates and returns the ones to keep. OSErrors propagate to the caller.
    """
    report = SyncReport()
    patterns = read_ignore_patterns(src)
    files = collect_files(src, patterns)
    total = len(files)
    if total > PROGRESS_EVERY:
        logger.info(f"Syncing {total} files from {src} to {dst}")

    for i, rel in enumerate(files, start=1):
        target = dst / rel
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src / rel, target)
        report.copied += 1
        if total > PROGRESS_EVERY and i % PROGRESS_EVERY == 0:
            logger.info(f"Progress: {i * 100 // total}% ({i}/{total} files)")

    if prune:
        keep = set(files)
        # Files skipped by the ignore patterns were never mirrored.
        candidates = [rel for rel in sorted(_existing_files(dst) - keep)
                      if not is_ignored(rel, patterns)]
        protected = set(protect(candidates)) if protect and candidates else set()
        for rel in candidates:
            if rel in protected:
                continue
            path = dst / rel
            path.unlink()
            report.removed.append(rel)
            logger.info(f"Removed file not in checkpoint: {rel}")
            parent = path.parent
            while parent != dst and parent.exists() and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent

    return report
