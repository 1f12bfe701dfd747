#!/usr/bin/env python3
"""Bounded invocation of the git binary."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_OUTPUT = 10 * 1024 * 1024  # 10MB


@dataclass
class GitResult:
    """Outcome of one git invocation."""

    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRunner:
    """Runs git commands and turns every failure into a ``GitResult``.

    Nothing here raises: a timeout, a missing binary or output larger than
    ``max_output`` bytes is reported as a non-zero result so callers only
    have one failure path to inspect.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 max_output: int = DEFAULT_MAX_OUTPUT, executable: str = 'git'):
        self.timeout = timeout
        self.max_output = max_output
        self.executable = executable

    def run(self, args: Sequence[str], cwd: Path, timeout: Optional[float] = None,
            config: Optional[Dict[str, str]] = None, input: Optional[str] = None) -> GitResult:
        cmd: List[str] = [self.executable]
        for key, value in (config or {}).items():
            cmd.extend(['-c', f'{key}={value}'])
        cmd.extend(args)
        timeout = self.timeout if timeout is None else timeout

        logger.debug(f"git {' '.join(args)} (cwd={cwd})")
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(cwd),
                capture_output=True,
                input=input,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"git {args[0] if args else ''} timed out after {timeout}s")
            return GitResult(124, '', f'Command timed out after {timeout}s')
        except OSError as e:
            return GitResult(127, '', str(e))

        stdout = proc.stdout or ''
        stderr = proc.stderr or ''
        if len(stdout) + len(stderr) > self.max_output:
            return GitResult(1, '', f'Output exceeded {self.max_output} bytes')

        return GitResult(proc.returncode, stdout, stderr)
