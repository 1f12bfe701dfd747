#!/usr/bin/env python3
"""Tests for the configuration module."""

import json
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shadowpoint.config import CheckpointConfig, DEFAULT_EXCLUDE_PATTERNS


class TestCheckpointConfig(unittest.TestCase):
    """Test cases for CheckpointConfig class."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir)
        self.config_path = self.root / "config.json"

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def write(self, data):
        self.config_path.write_text(json.dumps(data))

    def test_default_config(self):
        config = CheckpointConfig(self.config_path)

        self.assertTrue(config.enabled)
        self.assertEqual(config.retention_days, 7)
        self.assertEqual(config.max_file_size_mb, 100)
        self.assertFalse(config.checkpoint_on_stop)
        self.assertTrue(config.auto_cleanup)
        self.assertEqual(config.exclude_patterns, DEFAULT_EXCLUDE_PATTERNS)

    def test_defaults_are_fresh_copies(self):
        config = CheckpointConfig(self.config_path)
        config.exclude_patterns.append('*.secret')
        self.assertNotIn('*.secret', CheckpointConfig.defaults()['exclude_patterns'])

    def test_partial_config_file(self):
        """Keys missing from the file keep their defaults."""
        self.write({"enabled": False, "retention_days": 14})
        config = CheckpointConfig(self.config_path)

        self.assertFalse(config.enabled)
        self.assertEqual(config.retention_days, 14)
        self.assertEqual(config.max_file_size_mb, 100)
        self.assertTrue(config.auto_cleanup)
        self.assertIsInstance(config.exclude_patterns, list)

    def test_invalid_json_config(self):
        self.config_path.write_text("{ invalid json }")
        config = CheckpointConfig(self.config_path)

        self.assertTrue(config.enabled)
        self.assertEqual(config.retention_days, 7)

    def test_non_object_config(self):
        self.write(["enabled", False])
        config = CheckpointConfig(self.config_path)
        self.assertTrue(config.enabled)

    def test_config_validation(self):
        self.write({"retention_days": -5, "max_file_size_mb": 5000})
        config = CheckpointConfig(self.config_path)

        self.assertEqual(config.retention_days, 1)
        self.assertEqual(config.max_file_size_mb, 1000)

    def test_edge_case_values(self):
        self.write({"retention_days": 1000, "max_file_size_mb": 0, "exclude_patterns": None})
        config = CheckpointConfig(self.config_path)

        self.assertEqual(config.retention_days, 365)
        self.assertEqual(config.max_file_size_mb, 0.1)
        self.assertEqual(config.exclude_patterns, [])

    def test_wrong_types_fall_back(self):
        self.write({
            "retention_days": "soon",
            "max_file_size_mb": [1],
            "exclude_patterns": "*.log",
            "enabled": 1,
        })
        config = CheckpointConfig(self.config_path)

        self.assertEqual(config.retention_days, 7)
        self.assertEqual(config.max_file_size_mb, 100)
        self.assertEqual(config.exclude_patterns, DEFAULT_EXCLUDE_PATTERNS)
        self.assertIs(config.enabled, True)

    def test_should_exclude_file(self):
        config = CheckpointConfig(self.config_path)

        self.assertTrue(config.should_exclude_file("build/x.js", root=self.root))
        self.assertTrue(config.should_exclude_file("x.log", root=self.root))
        self.assertTrue(config.should_exclude_file(".env", root=self.root))
        self.assertTrue(config.should_exclude_file("node_modules/pkg/index.js", root=self.root))
        self.assertTrue(config.should_exclude_file("src/__pycache__/m.pyc", root=self.root))
        self.assertFalse(config.should_exclude_file("src/app.ts", root=self.root))
        self.assertFalse(config.should_exclude_file("main.py", root=self.root))

    def test_directory_pattern_needs_directory(self):
        """``build/`` matches a build directory, not a file named build."""
        config = CheckpointConfig(self.config_path)
        (self.root / "build").write_text("a file, not a dir")

        self.assertFalse(config.should_exclude_file("build", root=self.root))
        self.assertTrue(config.should_exclude_file("build/out.js", root=self.root))

    def test_absolute_path_inside_root(self):
        config = CheckpointConfig(self.config_path)
        self.assertTrue(config.should_exclude_file(self.root / "dist" / "bundle.js", root=self.root))
        self.assertFalse(config.should_exclude_file(self.root / "src" / "app.py", root=self.root))

    def test_large_file_excluded(self):
        self.write({"max_file_size_mb": 0.1})
        config = CheckpointConfig(self.config_path)

        large_file = self.root / "large.bin"
        large_file.write_bytes(b"0" * (200 * 1024))
        small_file = self.root / "small.bin"
        small_file.write_bytes(b"0" * 1024)

        self.assertTrue(config.should_exclude_file(large_file, root=self.root))
        self.assertFalse(config.should_exclude_file(small_file, root=self.root))

    def test_complex_glob_patterns(self):
        self.write({
            "exclude_patterns": [
                "*.pyc",
                "test_*.py",
                "**/temp_*",
                "*.{tmp,bak}",
                "/venv/",
            ]
        })
        config = CheckpointConfig(self.config_path)

        self.assertTrue(config.should_exclude_file("module.pyc", root=self.root))
        self.assertTrue(config.should_exclude_file("deep/nested/file.pyc", root=self.root))
        self.assertTrue(config.should_exclude_file("test_module.py", root=self.root))
        self.assertTrue(config.should_exclude_file("src/subdir/temp_file.txt", root=self.root))
        self.assertTrue(config.should_exclude_file("document.tmp", root=self.root))
        self.assertTrue(config.should_exclude_file("backup.bak", root=self.root))
        self.assertTrue(config.should_exclude_file("venv/lib/site.py", root=self.root))

        self.assertFalse(config.should_exclude_file("src/venv/lib/site.py", root=self.root))
        self.assertFalse(config.should_exclude_file("main.py", root=self.root))
        self.assertFalse(config.should_exclude_file("notes.txt", root=self.root))

    def test_update_persists(self):
        config = CheckpointConfig(self.config_path)
        config.update(retention_days=30, checkpoint_on_stop=True)

        saved = json.loads(self.config_path.read_text())
        self.assertEqual(saved["retention_days"], 30)
        self.assertTrue(saved["checkpoint_on_stop"])

        reloaded = CheckpointConfig(self.config_path)
        self.assertEqual(reloaded.retention_days, 30)
        self.assertTrue(reloaded.checkpoint_on_stop)

    def test_update_is_validated(self):
        config = CheckpointConfig(self.config_path)
        config.update(retention_days=9999)
        self.assertEqual(config.retention_days, 365)

    def test_update_unknown_key(self):
        config = CheckpointConfig(self.config_path)
        with self.assertRaises(KeyError):
            config.update(colour="blue")
        self.assertFalse(self.config_path.exists())

    def test_save_leaves_no_temp_files(self):
        config = CheckpointConfig(self.config_path)
        config.save()
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["config.json"])


if __name__ == '__main__':
    unittest.main()
