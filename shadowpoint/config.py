#!/usr/bin/env python3
"""Configuration management for shadowpoint."""

import fnmatch
import json
import logging
import os
import re
import tempfile
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .paths import hook_home

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS = [
    '*.log',
    'node_modules/',
    '.env',
    '__pycache__/',
    '*.tmp',
    '.git/',
    'dist/',
    'build/',
    'coverage/',
    '*.swp',
    '*.swo',
    '.DS_Store',
    'Thumbs.db',
]


class CheckpointConfig:
    """Checkpoint settings read from config.json, plus the exclusion policy."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else hook_home() / 'config.json'
        self._config = self._load_config()

    @staticmethod
    def defaults() -> Dict:
        """Return default configuration."""
        return {
            'enabled': True,
            'retention_days': 7,
            'exclude_patterns': list(DEFAULT_EXCLUDE_PATTERNS),
            'max_file_size_mb': 100,
            'checkpoint_on_stop': False,
            'auto_cleanup': True
        }

    def _load_config(self) -> Dict:
        if not self.config_path.exists():
            return self.defaults()

        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable config {self.config_path}: {e}")
            return self.defaults()

        if not isinstance(raw, dict):
            logger.warning(f"Ignoring config {self.config_path}: top level is not an object")
            return self.defaults()
        return self._validate(raw)

    def _validate(self, config: Dict) -> Dict:
        """Coerce and clamp every known key, falling back to defaults."""
        defaults = self.defaults()
        validated = {}

        validated['enabled'] = bool(config.get('enabled', defaults['enabled']))

        try:
            retention = int(config.get('retention_days', defaults['retention_days']))
            validated['retention_days'] = max(1, min(retention, 365))
        except (ValueError, TypeError):
            validated['retention_days'] = defaults['retention_days']

        patterns = config.get('exclude_patterns', defaults['exclude_patterns'])
        if patterns is None:
            validated['exclude_patterns'] = []
        elif isinstance(patterns, list):
            validated['exclude_patterns'] = [str(p) for p in patterns if p]
        else:
            validated['exclude_patterns'] = defaults['exclude_patterns']

        try:
            max_size = float(config.get('max_file_size_mb', defaults['max_file_size_mb']))
            validated['max_file_size_mb'] = max(0.1, min(max_size, 1000))
        except (ValueError, TypeError):
            validated['max_file_size_mb'] = defaults['max_file_size_mb']

        validated['checkpoint_on_stop'] = bool(
            config.get('checkpoint_on_stop', defaults['checkpoint_on_stop']))
        validated['auto_cleanup'] = bool(config.get('auto_cleanup', defaults['auto_cleanup']))

        return validated

    @property
    def enabled(self) -> bool:
        return self._config['enabled']

    @property
    def retention_days(self) -> int:
        return self._config['retention_days']

    @property
    def exclude_patterns(self) -> List[str]:
        return self._config['exclude_patterns']

    @property
    def max_file_size_mb(self) -> float:
        return float(self._config['max_file_size_mb'])

    @property
    def checkpoint_on_stop(self) -> bool:
        return self._config['checkpoint_on_stop']

    @property
    def auto_cleanup(self) -> bool:
        return self._config['auto_cleanup']

    def as_dict(self) -> Dict:
        """Copy of the active configuration."""
        return json.loads(json.dumps(self._config))

    def update(self, **values) -> None:
        """Merge new values, validate them and persist the result."""
        unknown = set(values) - set(self.defaults())
        if unknown:
            raise KeyError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        merged = dict(self._config)
        merged.update(values)
        self._config = self._validate(merged)
        self.save()

    def save(self) -> None:
        """Write the configuration atomically."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.config_path.parent),
                                        prefix='.config', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._config, f, indent=2)
            os.replace(tmp_path, self.config_path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def should_exclude_file(self, file_path: Union[str, Path],
                            root: Optional[Path] = None) -> bool:
        """Check if a file should be excluded from checkpointing.

        Absolute paths inside ``root`` (default: the current directory) are
        matched relative to it. A file larger than ``max_file_size_mb`` is
        excluded whatever its name.
        """
        root = Path(root) if root else Path.cwd()
        path = Path(file_path)
        full_path = path if path.is_absolute() else root / path

        rel = str(file_path).replace('\\', '/')
        if path.is_absolute():
            try:
                rel = full_path.resolve().relative_to(root.resolve()).as_posix()
            except (ValueError, OSError):
                pass
        parts = tuple(p for p in PurePosixPath(rel).parts if p not in ('/', '.'))

        if parts:
            is_dir = full_path.is_dir()
            for pattern in self.exclude_patterns:
                for expanded in _expand_braces(pattern):
                    if _match_pattern(parts, expanded, is_dir):
                        return True

        try:
            if full_path.is_file():
                size_mb = full_path.stat().st_size / (1024 * 1024)
                if size_mb > self.max_file_size_mb:
                    return True
        except OSError:
            pass

        return False


def _expand_braces(pattern: str) -> List[str]:
    """Expand ``*.{tmp,bak}`` style alternatives."""
    match = re.search(r'\{([^{}]+)\}', pattern)
    if not match:
        return [pattern]
    expanded = []
    for option in match.group(1).split(','):
        candidate = pattern[:match.start()] + option.strip() + pattern[match.end():]
        expanded.extend(_expand_braces(candidate))
    return expanded


def _match_pattern(parts: Tuple[str, ...], pattern: str, is_dir: bool = False) -> bool:
    """Match one glob pattern against a relative path split into segments.

    A pattern matches when it covers any contiguous run of segments that ends
    at a directory containing the file or at the file itself. ``dir/``
    patterns only match directories; a leading ``/`` anchors to the root.
    """
    pattern = pattern.replace('\\', '/').strip()
    if not pattern or pattern == '/':
        return False
    dir_only = pattern.endswith('/')
    anchored = pattern.startswith('/')
    pat_parts = [p for p in pattern.strip('/').split('/') if p]

    starts = [0] if anchored else range(len(parts))
    for start in starts:
        for end in range(start + 1, len(parts) + 1):
            if dir_only and end == len(parts) and not is_dir:
                continue
            if _match_segments(parts[start:end], pat_parts):
                return True
    return False


def _match_segments(path: Sequence[str], pat: Sequence[str]) -> bool:
    if not pat:
        return not path
    if pat[0] == '**':
        return any(_match_segments(path[i:], pat[1:]) for i in range(len(path) + 1))
    if not path:
        return False
    return fnmatch.fnmatch(path[0], pat[0]) and _match_segments(path[1:], pat[1:])
