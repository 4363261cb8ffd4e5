"""Crash-safe replacement of small files (session storage, preferences).

A write lands completely or not at all: the payload goes to a temp file
in the target directory, is fsynced, then renamed over the target.
"""
from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _sync_directory(directory: Path) -> None:
    """Flush the rename itself. Not every filesystem allows opening a directory."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(directory, flags)
    except OSError as exc:
        logger.debug("Directory fsync unavailable for %s: %s", directory, exc)
        return
    try:
        os.fsync(fd)
    except OSError as exc:
        logger.debug("Directory fsync failed for %s: %s", directory, exc)
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        mode="wb",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            with contextlib.suppress(FileNotFoundError):
                tmp_path.unlink()
            raise

    try:
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()
        raise
    _sync_directory(path.parent)


def atomic_write_json(path: Path, data: Any, *, indent: int = 2) -> None:
    """Serialize first, so an unserializable value never touches the disk."""
    payload = json.dumps(data, indent=indent).encode("utf-8")
    atomic_write_bytes(path, payload)
