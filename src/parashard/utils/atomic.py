"""Atomic file replacement helpers."""

from __future__ import annotations

import os
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


def atomic_write_text(path: Path, content: str, *, suffix: str | None = None) -> Path:
    """Write *content* to *path* so readers never observe a partial file.

    The data is written and fsynced to a temporary sibling, then moved
    into place with ``os.replace`` (atomic on POSIX and Windows within a
    single filesystem). The temporary name carries a random component, so
    a retried call never collides with a leftover from a failed attempt.

    Args:
        path: Final destination.
        content: UTF-8 text to write.
        suffix: Optional unique component for the temporary file name.

    Returns:
        The destination path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    token = suffix or uuid.uuid4().hex[:8]
    tmp_path = path.with_name(f".{path.name}.{token}.tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    return path
