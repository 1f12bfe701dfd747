#!/usr/bin/env python3
"""Common fixtures for the shadowpoint test suite."""

import io
import json
import os
import shutil
import subprocess
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from unittest import mock

HAS_GIT = shutil.which('git') is not None

DEFAULT_FILES = {
    "main.py": "def main():\n    print('Hello, world!')\n\nif __name__ == '__main__':\n    main()\n",
    "utils.py": "def helper(x):\n    return x * 2\n",
    "README.md": "# Test Project\n\nA project used to exercise checkpoints.",
    "src/module.py": "class TestClass:\n    def __init__(self):\n        self.value = 42\n",
}

# Keep user-level git settings (signing, hooks, templates) out of the tests.
GIT_TEST_ENV = {
    'GIT_CONFIG_NOSYSTEM': '1',
    'GIT_AUTHOR_NAME': 'Test User',
    'GIT_AUTHOR_EMAIL': 'test@example.com',
    'GIT_COMMITTER_NAME': 'Test User',
    'GIT_COMMITTER_EMAIL': 'test@example.com',
}


def create_test_project(base_dir: Path, files: Optional[Dict[str, str]] = None) -> Path:
    """Create a project directory populated with ``files`` (relative path -> content)."""
    project_dir = base_dir / "test_project"
    project_dir.mkdir(parents=True, exist_ok=True)
    for rel, content in (DEFAULT_FILES if files is None else files).items():
        path = project_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return project_dir


def hook_event(tool_name: str, tool_input: Dict, session_id: str = "test-session",
               tool_response: Optional[Dict] = None, **extra) -> Dict:
    """Build a hook payload as the editor sends it on stdin."""
    event = {"tool_name": tool_name, "tool_input": tool_input, "session_id": session_id}
    if tool_response is not None:
        event["tool_response"] = tool_response
    event.update(extra)
    return event


def git(path: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(['git', *args], cwd=str(path), capture_output=True, text=True)


def init_git_repo(path: Path, initial_commit: bool = True) -> None:
    git(path, 'init', '-q')
    git(path, 'config', 'user.email', 'test@example.com')
    git(path, 'config', 'user.name', 'Test User')
    git(path, 'config', 'commit.gpgsign', 'false')
    if initial_commit:
        git(path, 'add', '-A')
        git(path, 'commit', '-q', '-m', 'Initial commit')


def commit_count(path: Path) -> int:
    result = git(path, 'rev-list', '--count', '--branches')
    return int(result.stdout.strip()) if result.returncode == 0 and result.stdout.strip() else 0


def run_cli(argv: List[str], stdin: Union[str, bytes] = '') -> Tuple[int, str, str]:
    """Run the CLI in-process, returning (exit code, stdout, stderr).

    ``bytes`` input is decoded as UTF-8 by stdin itself, like a real pipe.
    """
    from shadowpoint.cli import main

    if isinstance(stdin, bytes):
        stream = io.TextIOWrapper(io.BytesIO(stdin), encoding='utf-8')
    else:
        stream = io.StringIO(stdin)
    out, err = io.StringIO(), io.StringIO()
    with mock.patch('sys.stdin', stream), redirect_stdout(out), redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


class SandboxMixin:
    """Temp dir with a project, a checkpoint base and an isolated environment."""

    project_files: Optional[Dict[str, str]] = None

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.base = Path(self.temp_dir)
        self.project_dir = create_test_project(self.base, self.project_files)
        self.checkpoint_base = self.base / 'home' / 'checkpoints'
        self.config_path = self.base / 'home' / 'config.json'
        env = dict(GIT_TEST_ENV, SHADOWPOINT_HOME=str(self.base / 'home'))
        self._env = mock.patch.dict(os.environ, env)
        self._env.start()

    def tearDown(self):
        self._env.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, **values) -> Path:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(json.dumps(values))
        return self.config_path
