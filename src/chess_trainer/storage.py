"""File-backed store of per-user progress blobs."""

from __future__ import annotations

import os
import re
from pathlib import Path

_USER_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,64}")


def validate_user_id(user_id: str) -> str:
    if not isinstance(user_id, str) or not _USER_ID_RE.fullmatch(user_id):
        raise ValueError(f"Invalid user id: {user_id!r}")
    return user_id


class ProgressStore:
    """Opaque string blobs keyed by user id, one JSON file per user."""

    def __init__(self, directory: str = "data/progress") -> None:
        self._dir = Path(directory)

    def _path(self, user_id: str) -> Path:
        return self._dir / f"{validate_user_id(user_id)}.json"

    def get(self, user_id: str) -> str | None:
        path = self._path(user_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, user_id: str, blob: str) -> None:
        """Write atomically via a temp file + os.replace()."""
        path = self._path(user_id)
        self._dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(blob, encoding="utf-8")
        os.replace(tmp, path)

    def delete(self, user_id: str) -> bool:
        path = self._path(user_id)
        if not path.exists():
            return False
        path.unlink()
        return True
