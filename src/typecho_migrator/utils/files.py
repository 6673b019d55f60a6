"""Filesystem helpers for exported artifacts."""

from __future__ import annotations

from pathlib import Path


def write_text_atomic(path: Path, data: str) -> Path:
    """Write *data* to *path*, creating directories as needed.

    Atomic write via .tmp rename to prevent partial files.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(data, encoding="utf-8")
    tmp_path.replace(path)
    return path


def write_bytes_atomic(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_bytes(data)
    tmp_path.replace(path)
    return path
