#!/usr/bin/env python3
"""Hook-facing sequencing of exclusion, snapshot and metadata steps.

Checkpointing guards another operation, so nothing in here may stop that
operation: every failure is logged and reported as a ``HookOutcome`` whose
exit code is still 0.
"""

import enum
import logging
from pathlib import Path
from typing import Dict, Optional

from .cleanup import expire_project
from .config import CheckpointConfig
from .gitcmd import GitRunner
from .metadata import (STATUS_FAILED, STATUS_SUCCESS, CheckpointMetadata,
                       LockTimeoutError, extract_files)
from .shadow import ShadowRepository

logger = logging.getLogger(__name__)

CHECKPOINT_TOOLS = ('Write', 'Edit', 'MultiEdit', 'Manual')
STATUS_TOOLS = ('Write', 'Edit', 'MultiEdit')
STOP_EVENT = 'Stop'


class HookOutcome(enum.Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    DISABLED = 'disabled'
    IGNORED = 'ignored'
    EXCLUDED = 'excluded'
    SKIPPED = 'skipped'
    FAILED = 'failed'

    @property
    def exit_code(self) -> int:
        return 0


def describe(tool_name: str, tool_input: Dict) -> str:
    """Human readable commit message for a checkpoint."""
    file_path = tool_input.get('file_path')
    filename = Path(file_path).name if file_path else None

    if tool_name == 'Write':
        return f"Before creating {filename}" if filename else "Before creating new file"
    if tool_name == 'Edit':
        return f"Before editing {filename}" if filename else "Before editing file"
    if tool_name == 'MultiEdit':
        if not filename:
            return "Before multi-edit operation"
        return f"Before {len(tool_input.get('edits') or [])} edits to {filename}"
    if tool_name == 'Manual':
        return tool_input.get('message') or 'Manual checkpoint'
    if tool_name == STOP_EVENT:
        return 'Session end'
    return f"Before {tool_name} operation"


class CheckpointOrchestrator:
    """Handles one hook event for one project."""

    def __init__(self, config: CheckpointConfig, project_path: Path,
                 checkpoint_base: Optional[Path] = None,
                 runner: Optional[GitRunner] = None,
                 metadata: Optional[CheckpointMetadata] = None):
        self.config = config
        self.project_path = Path(project_path).resolve()
        self.metadata = metadata or CheckpointMetadata(checkpoint_base)
        self.shadow = ShadowRepository(self.project_path,
                                       checkpoint_base=self.metadata.checkpoint_base,
                                       runner=runner, metadata=self.metadata)

    def dispatch(self, event: Dict, post: bool = False) -> HookOutcome:
        if event.get('hook_event_name') == STOP_EVENT:
            return self.on_stop(event)
        if post or 'tool_response' in event:
            return self.after_mutation(event)
        return self.before_mutation(event)

    def before_mutation(self, event: Dict) -> HookOutcome:
        if not self.config.enabled:
            return HookOutcome.DISABLED

        tool_name = event.get('tool_name') or ''
        tool_input = event.get('tool_input')
        if not isinstance(tool_input, dict):
            tool_input = {}
        if tool_name not in CHECKPOINT_TOOLS:
            return HookOutcome.IGNORED

        file_path = tool_input.get('file_path')
        if file_path and self.config.should_exclude_file(file_path, root=self.project_path):
            logger.info(f"Skipping checkpoint for excluded file: {file_path}")
            return HookOutcome.EXCLUDED

        return self._checkpoint(tool_name, tool_input, event.get('session_id') or '')

    def on_stop(self, event: Dict) -> HookOutcome:
        if not self.config.enabled or not self.config.checkpoint_on_stop:
            return HookOutcome.IGNORED
        return self._checkpoint(STOP_EVENT, {}, event.get('session_id') or '')

    def _checkpoint(self, tool_name: str, tool_input: Dict, session_id: str) -> HookOutcome:
        if not self.shadow.is_project_repo() and not self.shadow.init_project_repo():
            logger.warning("Could not initialize git repository, continuing without it")

        note = {'tool_name': tool_name, 'session_id': session_id,
                'files': extract_files(tool_name, tool_input)}

        checkpoint_hash = self.shadow.create_checkpoint(describe(tool_name, tool_input), note)
        if not checkpoint_hash:
            logger.warning("Could not create checkpoint")
            return HookOutcome.FAILED

        try:
            self.metadata.add_checkpoint(self.shadow.project_hash, checkpoint_hash,
                                         tool_name, tool_input, session_id)
        except (LockTimeoutError, OSError) as e:
            logger.warning(f"Checkpoint {checkpoint_hash[:8]} created but not recorded: {e}")
            return HookOutcome.CREATED

        logger.info(f"Created checkpoint: {checkpoint_hash[:8]}")
        if self.config.auto_cleanup:
            self._expire_old()
        return HookOutcome.CREATED

    def _expire_old(self) -> None:
        try:
            expired = expire_project(self.metadata, self.shadow.project_hash,
                                     self.config.retention_days)
        except (LockTimeoutError, OSError) as e:
            logger.debug(f"Skipped retention cleanup: {e}")
            return
        if expired:
            logger.info(f"Expired {len(expired)} checkpoint records older than "
                        f"{self.config.retention_days} days")

    def after_mutation(self, event: Dict) -> HookOutcome:
        if not self.config.enabled:
            return HookOutcome.DISABLED
        if (event.get('tool_name') or '') not in STATUS_TOOLS:
            return HookOutcome.IGNORED

        checkpoints = self.metadata.list_project_checkpoints(self.shadow.project_hash)
        if not checkpoints:
            return HookOutcome.SKIPPED

        tool_response = event.get('tool_response')
        if not isinstance(tool_response, dict):
            tool_response = {}
        status = STATUS_FAILED if tool_response.get('success', True) is False else STATUS_SUCCESS

        latest = checkpoints[0]
        try:
            self.metadata.update_checkpoint_status(self.shadow.project_hash, latest['hash'],
                                                   status, tool_response)
        except (LockTimeoutError, OSError) as e:
            logger.warning(f"Could not update checkpoint {latest['hash'][:8]}: {e}")
            return HookOutcome.FAILED
        return HookOutcome.UPDATED
