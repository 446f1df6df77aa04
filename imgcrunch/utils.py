"""Utility helpers for hashing and atomic file handling."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from pathlib import Path
from typing import Union


def url_hash(url: str) -> str:
    """Return the MD5 hex digest used to name the local copy of a URL."""
    return hashlib.md5(url.encode("utf-8")).hexdigest()


def write_bytes_atomic(target: Path, data: bytes) -> None:
    """Write to a sibling temp file and rename it into place."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_text_atomic(target: Path, text: str) -> None:
    write_bytes_atomic(target, text.encode("utf-8"))


def touch_atomic(target: Path) -> None:
    """Create an empty marker file without exposing a half-written one."""
    write_bytes_atomic(target, b"")


def remove_path(path: Union[str, Path]) -> bool:
    """Delete a file or a directory tree; returns whether anything was removed."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False
