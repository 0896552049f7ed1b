from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from .errors import ProcessingError

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "imagezip-"


def default_temp_root() -> Path:
    return Path(os.getenv("IMAGEZIP_TEMP_DIR") or tempfile.gettempdir())


class TempWorkspace:
    """Per-job scratch tree: ``extract/``, ``staging/`` and ``output.zip``.

    Use as a context manager; the whole tree is removed when the block exits,
    whatever the outcome.
    """

    def __init__(self, job_id: str, temp_root: Path | None = None):
        self.temp_root = (temp_root or default_temp_root()).resolve()
        self.root = self.temp_root / f"{WORKSPACE_PREFIX}{job_id}"
        self.extract_dir = self.root / "extract"
        self.staging_dir = self.root / "staging"
        self.output_zip_path = self.root / "output.zip"

    def acquire(self) -> TempWorkspace:
        if self.root.exists():
            # Leftover from a crashed run with the same id.
            self._remove_tree()
        try:
            self.extract_dir.mkdir(parents=True, exist_ok=False)
            self.staging_dir.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise ProcessingError(f"Failed to create temp directory: {exc}") from exc
        return self

    def release(self) -> None:
        if not self.root.exists():
            return
        try:
            self._remove_tree()
        except OSError:
            logger.exception("Failed to remove workspace %s", self.root)

    def __enter__(self) -> TempWorkspace:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _remove_tree(self) -> None:
        root = self.root.resolve()
        # Safety barrier: only ever delete <temp_root>/imagezip-<job_id>.
        if root == self.temp_root or self.temp_root not in root.parents:
            return
        if not root.name.startswith(WORKSPACE_PREFIX):
            return
        shutil.rmtree(root)
