from __future__ import annotations

from pathlib import PurePosixPath

from .errors import ProcessingError

MAX_SUFFIX_ATTEMPTS = 10000


def _normalize(path: str | PurePosixPath) -> str:
    return PurePosixPath(str(path).replace("\\", "/")).as_posix()


class CollisionManager:
    """Hands out unique relative output paths for one job.

    Example: IMG_1.jpg -> IMG_1.jpg, IMG_1-1.jpg, IMG_1-2.jpg, ...
    The folder is part of the key, so a/x.jpg and b/x.jpg never collide.
    """

    def __init__(self) -> None:
        self._used: set[str] = set()

    def reserve_unique(self, desired: str | PurePosixPath) -> str:
        key = _normalize(desired)
        if key not in self._used:
            self._used.add(key)
            return key

        desired_path = PurePosixPath(key)
        parent = desired_path.parent
        stem = desired_path.stem or "file"
        suffix = desired_path.suffix

        for i in range(1, MAX_SUFFIX_ATTEMPTS + 1):
            candidate = (parent / f"{stem}-{i}{suffix}").as_posix()
            if candidate not in self._used:
                self._used.add(candidate)
                return candidate

        raise ProcessingError(f"Could not find a free output name for {key} after {MAX_SUFFIX_ATTEMPTS} attempts")
