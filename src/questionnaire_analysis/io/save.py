"""Utilities for writing analysis outputs to disk."""

from __future__ import annotations

import json
import logging
import os
import uuid
from contextlib import suppress
from pathlib import Path
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)


def ensure_directory(path: str | Path) -> Path:
    """Create a directory if it does not exist and return it."""

    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _fsync_directory(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        logger.debug("fsync: unable to open directory %s", path)
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("fsync: sync failed for directory %s", path)
    finally:
        os.close(fd)


def _row_to_dict(row: dict[str, Any] | BaseModel) -> dict[str, Any]:
    return row.model_dump(mode="json") if isinstance(row, BaseModel) else row


def atomic_write_text(path: str | Path, content: str) -> Path:
    """Replace file contents via temp-write + rename so readers never see partial output."""

    file_path = Path(path)
    ensure_directory(file_path.parent)
    temp_path = file_path.parent / f".{file_path.name}.{uuid.uuid4().hex}.tmp"
    try:
        with temp_path.open("w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, file_path)
        _fsync_directory(file_path.parent)
    finally:
        if temp_path.exists():
            with suppress(OSError):
                temp_path.unlink()
    return file_path


def save_json(path: str | Path, payload: dict[str, Any] | BaseModel) -> Path:
    """Save a JSON object to disk atomically."""

    content = json.dumps(_row_to_dict(payload), ensure_ascii=False, indent=2) + "\n"
    return atomic_write_text(path, content)


def append_jsonl(path: str | Path, rows: list[dict[str, Any] | BaseModel]) -> Path:
    """Append records to a JSONL file, fsyncing after the batch."""

    file_path = Path(path)
    ensure_directory(file_path.parent)
    if not rows:
        return file_path

    with file_path.open("a", encoding="utf-8") as handle:
        for row in rows:
            handle.write(json.dumps(_row_to_dict(row), ensure_ascii=False) + "\n")
        handle.flush()
        os.fsync(handle.fileno())
    _fsync_directory(file_path.parent)
    return file_path


def read_jsonl(path: str | Path) -> list[dict[str, Any]]:
    """Read JSON objects from a JSONL file, skipping blank lines; missing file gives []."""

    file_path = Path(path)
    if not file_path.exists():
        return []
    rows: list[dict[str, Any]] = []
    with file_path.open("r", encoding="utf-8") as handle:
        for line_number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            payload = json.loads(line)
            if not isinstance(payload, dict):
                raise ValueError(f"{file_path}:{line_number} is not a JSON object.")
            rows.append(payload)
    return rows
