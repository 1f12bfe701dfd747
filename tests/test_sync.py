#!/usr/bin/env python3
"""Tests for mirroring between a project and its shadow worktree."""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shadowpoint.sync import collect_files, is_ignored, mirror_tree, read_ignore_patterns


def populate(root, files):
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


class TestMirrorTree(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.src = Path(self.temp_dir) / "src"
        self.dst = Path(self.temp_dir) / "dst"
        self.src.mkdir()
        self.dst.mkdir()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_hidden_entries_skipped_except_gitignore(self):
        populate(self.src, {
            "main.py": "print(1)\n",
            ".env": "SECRET=1\n",
            ".hidden/config": "x\n",
            ".gitignore": "",
        })

        self.assertEqual(collect_files(self.src, []), [".gitignore", "main.py"])

    def test_ignore_patterns_are_substrings(self):
        populate(self.src, {
            ".gitignore": "# comment\n\nlog\nbuild\n",
            "app.py": "",
            "debug.log": "",
            "catalog.txt": "",
            "build/out.js": "",
            "src/builder.py": "",
        })
        patterns = read_ignore_patterns(self.src)

        self.assertEqual(patterns, ["log", "build"])
        self.assertTrue(is_ignored("catalog.txt", patterns))
        self.assertEqual(collect_files(self.src, patterns), [".gitignore", "app.py"])

    def test_mirror_copies_and_overwrites(self):
        populate(self.src, {"a.txt": "new\n", "pkg/b.txt": "b\n"})
        populate(self.dst, {"a.txt": "old\n", "keep.txt": "untouched\n"})

        report = mirror_tree(self.src, self.dst)

        self.assertEqual(report.copied, 2)
        self.assertEqual(report.removed, [])
        self.assertEqual((self.dst / "a.txt").read_text(), "new\n")
        self.assertEqual((self.dst / "pkg" / "b.txt").read_text(), "b\n")
        self.assertEqual((self.dst / "keep.txt").read_text(), "untouched\n")

    def test_prune_removes_extra_files(self):
        populate(self.src, {"a.txt": "a\n", ".gitignore": "secret\n"})
        populate(self.dst, {
            "a.txt": "old\n",
            "extra/stale.txt": "gone\n",
            "secret.txt": "kept\n",
        })
        (self.dst / ".git").mkdir()

        report = mirror_tree(self.src, self.dst, prune=True)

        self.assertEqual(report.removed, ["extra/stale.txt"])
        self.assertFalse((self.dst / "extra").exists())
        self.assertTrue((self.dst / "secret.txt").exists())
        self.assertTrue((self.dst / ".git").is_dir())

    def test_prune_spares_protected_files(self):
        populate(self.src, {"a.txt": "a\n"})
        populate(self.dst, {"a.txt": "old\n", "build.o": "obj\n", "stale.txt": "gone\n"})
        seen = []

        def protect(candidates):
            seen.extend(candidates)
            return [c for c in candidates if c.endswith(".o")]

        report = mirror_tree(self.src, self.dst, prune=True, protect=protect)

        self.assertEqual(seen, ["build.o", "stale.txt"])
        self.assertEqual(report.removed, ["stale.txt"])
        self.assertTrue((self.dst / "build.o").exists())

    def test_missing_source(self):
        report = mirror_tree(Path(self.temp_dir) / "absent", self.dst)
        self.assertEqual(report.copied, 0)


if __name__ == '__main__':
    unittest.main()
