#!/usr/bin/env python3
"""Shadow git repositories holding checkpoint snapshots."""

import json
import logging
import re
import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .gitcmd import GitResult, GitRunner
from .metadata import CheckpointMetadata, utc_now
from .paths import checkpoint_base as default_checkpoint_base
from .paths import project_id
from .sync import mirror_tree

logger = logging.getLogger(__name__)

MAX_NOTE_BYTES = 1024 * 1024
MAX_NOTE_FILES = 10
DEFAULT_BRANCH = 'main'
PRIMARY_BRANCH_KEY = 'shadowpoint.primarybranch'

# Commits in the shadow repo never use the user's identity or signing setup.
SHADOW_GIT_CONFIG = {
    'user.name': 'shadowpoint',
    'user.email': 'shadowpoint@localhost',
    'commit.gpgsign': 'false',
    'core.autocrlf': 'false',
}

_HASH_RE = re.compile(r'^[a-f0-9]{1,40}$')
_ENVELOPE_RE = re.compile(r'^CHECKPOINT: (?P<message>.*?)(?: \[(?P<timestamp>[^\]]*)\])?$')
_FIELD_SEP = '\x1f'


def is_valid_checkpoint_hash(checkpoint_hash: str) -> bool:
    """Full or abbreviated lowercase hex commit id, at most 40 characters."""
    return bool(checkpoint_hash) and bool(_HASH_RE.match(checkpoint_hash))


def envelope(message: str, timestamp: str) -> str:
    return f"CHECKPOINT: {message} [{timestamp}]"


def parse_envelope(subject: str) -> Dict[str, str]:
    """Split a commit subject into its free-text message and timestamp."""
    match = _ENVELOPE_RE.match(subject.strip())
    if not match:
        return {'message': subject.strip(), 'timestamp': ''}
    return {'message': match.group('message').strip(),
            'timestamp': match.group('timestamp') or ''}


def fit_note_metadata(metadata: Dict) -> Dict:
    """Shrink note metadata to its essentials when it exceeds the size cap."""
    encoded = json.dumps(metadata, default=str).encode('utf-8')
    if len(encoded) <= MAX_NOTE_BYTES:
        return metadata
    logger.warning(f"Checkpoint metadata is {len(encoded)} bytes, truncating")
    return {
        'tool_name': metadata.get('tool_name', ''),
        'session_id': metadata.get('session_id', ''),
        'files': list(metadata.get('files') or [])[:MAX_NOTE_FILES]
    }


class ShadowRepository:
    """One project's checkpoint history, kept outside the project itself.

    Layout under ``checkpoint_base``::

        <project id>/worktree/       mirror of the project, staging area
        <project id>/worktree/.git/  checkpoint history and notes
    """

    def __init__(self, project_path: Path, checkpoint_base: Optional[Path] = None,
                 runner: Optional[GitRunner] = None,
                 metadata: Optional[CheckpointMetadata] = None):
        self.project_path = Path(project_path).resolve()
        self.checkpoint_base = Path(checkpoint_base) if checkpoint_base else default_checkpoint_base()
        self.project_hash = project_id(self.project_path)
        self.checkpoint_repo = self.checkpoint_base / self.project_hash
        self.worktree = self.checkpoint_repo / 'worktree'
        self.runner = runner or GitRunner()
        self.metadata = metadata or CheckpointMetadata(self.checkpoint_base)

    def _git(self, args: List[str], cwd: Optional[Path] = None) -> GitResult:
        return self.runner.run(args, cwd=cwd or self.project_path)

    def _shadow_git(self, args: List[str]) -> GitResult:
        return self.runner.run(args, cwd=self.worktree, config=SHADOW_GIT_CONFIG)

    def exists(self) -> bool:
        return (self.worktree / '.git').exists()

    def is_project_repo(self) -> bool:
        """Check if the project directory is already under git."""
        return self._git(['rev-parse', '--git-dir']).ok

    def init_project_repo(self) -> bool:
        """Put the project under git with a baseline commit, if it is not already."""
        if self.is_project_repo():
            return True

        result = self._git(['init', '-q'])
        if not result.ok:
            logger.error(f"git init failed in {self.project_path}: {result.stderr.strip()}")
            return False

        self._git(['add', '-A'])
        result = self._git(['commit', '-q', '-m', 'Initial checkpoint commit'])
        if not result.ok:
            # An empty tree or a missing identity; the repo is still usable.
            logger.info(f"No baseline commit created: {result.stderr.strip() or result.stdout.strip()}")
        return True

    def init_shadow_repo(self) -> bool:
        """Create the shadow history and worktree for this project, once."""
        if self.exists():
            return True

        try:
            self.checkpoint_repo.mkdir(parents=True, exist_ok=True)
            if self.worktree.exists():
                # Left over from an interrupted initialisation.
                shutil.rmtree(self.worktree)
        except OSError as e:
            logger.error(f"Could not prepare shadow repo {self.checkpoint_repo}: {e}")
            return False

        if self.is_project_repo():
            result = self.runner.run(['clone', '-q', str(self.project_path), str(self.worktree)],
                                     cwd=self.checkpoint_repo)
        else:
            self.worktree.mkdir()
            result = self._shadow_git(['init', '-q'])
            if result.ok:
                result = self._shadow_git(['symbolic-ref', 'HEAD', f'refs/heads/{DEFAULT_BRANCH}'])

        if not result.ok:
            logger.error(f"Could not initialise shadow repo: {result.stderr.strip()}")
            shutil.rmtree(self.worktree, ignore_errors=True)
            return False

        branch = self._shadow_git(['symbolic-ref', '--short', 'HEAD'])
        primary = branch.stdout.strip() if branch.ok and branch.stdout.strip() else DEFAULT_BRANCH
        self._shadow_git(['config', PRIMARY_BRANCH_KEY, primary])
        logger.debug(f"Shadow repo ready at {self.worktree} on branch {primary}")
        return True

    def primary_branch(self) -> str:
        result = self._shadow_git(['config', '--get', PRIMARY_BRANCH_KEY])
        return result.stdout.strip() if result.ok and result.stdout.strip() else DEFAULT_BRANCH

    def _ensure_on_primary(self) -> bool:
        """Reattach HEAD to the primary branch after an interrupted restore."""
        if self._shadow_git(['symbolic-ref', '-q', 'HEAD']).ok:
            return True
        result = self._shadow_git(['checkout', '-q', '-f', self.primary_branch()])
        if not result.ok:
            logger.error(f"Could not return shadow repo to {self.primary_branch()}: "
                         f"{result.stderr.strip()}")
        return result.ok

    def create_checkpoint(self, message: str, metadata: Dict) -> Optional[str]:
        """Snapshot the project. Returns the commit hash, or None on any failure."""
        if not self.init_shadow_repo():
            return None
        if not self._ensure_on_primary():
            return None

        metadata = fit_note_metadata(metadata)

        try:
            mirror_tree(self.project_path, self.worktree)
        except OSError as e:
            logger.error(f"Could not sync project into shadow repo: {e}")
            return None

        result = self._shadow_git(['add', '-A'])
        if not result.ok:
            logger.error(f"Staging checkpoint failed: {result.stderr.strip()}")
            return None

        result = self._shadow_git(['commit', '-q', '--allow-empty', '--no-verify',
                                   '-m', envelope(message, utc_now())])
        if not result.ok:
            logger.error(f"Checkpoint commit failed: {result.stderr.strip()}")
            return None

        result = self._shadow_git(['rev-parse', 'HEAD'])
        if not result.ok:
            logger.error(f"Could not read checkpoint hash: {result.stderr.strip()}")
            return None
        commit_hash = result.stdout.strip()

        note = self._shadow_git(['notes', 'add', '-f', '-m',
                                 json.dumps(metadata, indent=2, default=str), commit_hash])
        if not note.ok:
            # The commit is still a valid checkpoint without its note.
            logger.warning(f"Could not attach note to {commit_hash[:8]}: {note.stderr.strip()}")

        self._shadow_git(['checkout', '-q', self.primary_branch()])
        return commit_hash

    def _history_subjects(self) -> Dict[str, str]:
        result = self._shadow_git(['log', '--all', f'--format=%H{_FIELD_SEP}%s'])
        if not result.ok:
            return {}
        subjects = {}
        for line in result.stdout.splitlines():
            commit_hash, _, subject = line.partition(_FIELD_SEP)
            if commit_hash:
                subjects[commit_hash] = subject
        return subjects

    def list_checkpoints(self) -> List[Dict]:
        """Recorded checkpoints whose commits still exist, newest first."""
        if not self.exists():
            return []
        records = self.metadata.list_project_checkpoints(self.project_hash)
        if not records:
            return []

        subjects = self._history_subjects()
        checkpoints = []
        for record in records:
            subject = subjects.get(record['hash'])
            if subject is None:
                logger.debug(f"Skipping checkpoint {record['hash'][:8]}: commit not found")
                continue
            checkpoints.append({
                'hash': record['hash'],
                'timestamp': record.get('timestamp', ''),
                'message': parse_envelope(subject)['message'],
                'metadata': {
                    'tool_name': record.get('tool_name', ''),
                    'session_id': record.get('session_id', ''),
                    'files_affected': record.get('files_affected', []),
                    'status': record.get('status', ''),
                }
            })
        return checkpoints

    def checkpoint_commits(self) -> List[Dict]:
        """Every checkpoint commit in the shadow history, recorded or not."""
        if not self.exists():
            return []
        commits = []
        for commit_hash, subject in self._history_subjects().items():
            if subject.startswith('CHECKPOINT:'):
                parsed = parse_envelope(subject)
                commits.append({'hash': commit_hash, **parsed})
        return commits

    def read_note(self, checkpoint_hash: str) -> Dict:
        """The JSON note attached to a checkpoint commit, or {}."""
        if not is_valid_checkpoint_hash(checkpoint_hash) or not self.exists():
            return {}
        result = self._shadow_git(['notes', 'show', checkpoint_hash])
        if not result.ok:
            return {}
        try:
            note = json.loads(result.stdout)
        except json.JSONDecodeError:
            return {}
        return note if isinstance(note, dict) else {}

    def _ignored_paths(self, paths: List[str]) -> List[str]:
        """The subset of ``paths`` that the checked out .gitignore rules ignore.

        When git cannot answer, every path is reported so nothing is pruned.
        """
        result = self.runner.run(['check-ignore', '-z', '--stdin'], cwd=self.worktree,
                                 input='\0'.join(paths) + '\0')
        if result.returncode == 1:
            return []
        if not result.ok:
            logger.warning(f"Could not check ignore rules, keeping untracked files: "
                           f"{result.stderr.strip()}")
            return list(paths)
        return [p for p in result.stdout.split('\0') if p]

    def restore_checkpoint(self, checkpoint_hash: str, dry_run: bool = False,
                           prune: bool = False) -> bool:
        """Copy a checkpoint's files back over the project.

        ``prune`` also deletes project files that the checkpoint does not
        contain. A dry run only checks that the checkpoint can be checked out.
        """
        if not is_valid_checkpoint_hash(checkpoint_hash):
            logger.error(f"Invalid checkpoint hash format: {checkpoint_hash!r}")
            return False
        if not self.exists():
            logger.error(f"No shadow repository for {self.project_path}")
            return False

        result = self._shadow_git(['checkout', '-q', '-f', checkpoint_hash])
        if not result.ok:
            logger.error(f"Failed to checkout checkpoint: {result.stderr.strip()}")
            return False

        try:
            # Untracked and ignored leftovers of earlier syncs are not part of the checkpoint.
            self._shadow_git(['clean', '-fdxq'])
            if dry_run:
                logger.info(f"Would restore to checkpoint {checkpoint_hash}")
                return True
            report = mirror_tree(self.worktree, self.project_path, prune=prune,
                                 protect=self._ignored_paths)
            logger.info(f"Restored {report.copied} files from {checkpoint_hash[:8]}"
                        + (f", removed {len(report.removed)}" if report.removed else ''))
            return True
        except OSError as e:
            logger.error(f"Restoration failed: {e}")
            return False
        finally:
            self._shadow_git(['checkout', '-q', '-f', self.primary_branch()])

    def get_checkpoint_diff(self, checkpoint_hash: Optional[str] = None) -> str:
        """Per-file change summary of the live project against a checkpoint.

        Without a hash the most recent checkpoint is used.
        """
        if checkpoint_hash and not is_valid_checkpoint_hash(checkpoint_hash):
            return f"Error: Invalid checkpoint hash format: {checkpoint_hash}"
        if not self.exists():
            return ''

        try:
            mirror_tree(self.project_path, self.worktree)
        except OSError as e:
            logger.error(f"Could not refresh shadow worktree: {e}")
            return ''

        self._shadow_git(['add', '-A'])
        result = self._shadow_git(['diff', '--cached', '--stat', checkpoint_hash or 'HEAD', '--'])
        return result.stdout if result.ok else ''
