from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from imagezip.workspace import TempWorkspace


class TempWorkspaceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_layout(self) -> None:
        with TempWorkspace("job-1", temp_root=self.root) as ws:
            self.assertTrue(ws.extract_dir.is_dir())
            self.assertTrue(ws.staging_dir.is_dir())
            self.assertNotEqual(ws.extract_dir, ws.staging_dir)
            self.assertEqual(ws.output_zip_path.name, "output.zip")
            self.assertEqual(ws.root.parent, self.root.resolve())
            self.assertIn("job-1", ws.root.name)

    def test_removed_on_success(self) -> None:
        with TempWorkspace("job-2", temp_root=self.root) as ws:
            (ws.staging_dir / "a.txt").write_text("x")
            root = ws.root
        self.assertFalse(root.exists())

    def test_removed_on_error(self) -> None:
        with self.assertRaises(RuntimeError):
            with TempWorkspace("job-3", temp_root=self.root) as ws:
                nested = ws.extract_dir / "deep" / "dir"
                nested.mkdir(parents=True)
                (nested / "b.bin").write_bytes(b"\x00")
                root = ws.root
                raise RuntimeError("boom")
        self.assertFalse(root.exists())

    def test_stale_tree_is_replaced(self) -> None:
        stale = self.root / "imagezip-job-4" / "extract"
        stale.mkdir(parents=True)
        (stale / "old.jpg").write_bytes(b"old")
        with TempWorkspace("job-4", temp_root=self.root) as ws:
            self.assertEqual(list(ws.extract_dir.iterdir()), [])

    def test_release_is_idempotent(self) -> None:
        ws = TempWorkspace("job-5", temp_root=self.root).acquire()
        ws.release()
        ws.release()
        self.assertFalse(ws.root.exists())

    def test_distinct_jobs_get_distinct_roots(self) -> None:
        with TempWorkspace("a", temp_root=self.root) as first, TempWorkspace("b", temp_root=self.root) as second:
            self.assertNotEqual(first.root, second.root)


if __name__ == "__main__":
    unittest.main()
