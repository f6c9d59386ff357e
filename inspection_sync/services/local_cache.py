"""
Best-effort local backup of in-progress drafts.

The cache is a safety net for the editing session, never a second source of
truth: every failure here is logged and swallowed.
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from inspection_sync.schemas.inspection import LocalSnapshot

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def snapshot_key(facility_id: str, user_id: str) -> str:
    return f"inspection_draft_{facility_id}_{user_id}"


class LocalCache(Protocol):
    def get(self, key: str) -> LocalSnapshot | None: ...

    def set(self, key: str, snapshot: LocalSnapshot) -> None: ...

    def delete(self, key: str) -> None: ...

    def age(self, key: str, now: datetime) -> timedelta | None: ...


class MemoryLocalCache:
    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def get(self, key: str) -> LocalSnapshot | None:
        raw = self._entries.get(key)
        if raw is None:
            return None
        return _parse_snapshot(key, raw)

    def set(self, key: str, snapshot: LocalSnapshot) -> None:
        self._entries[key] = snapshot.model_dump_json()

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def age(self, key: str, now: datetime) -> timedelta | None:
        snapshot = self.get(key)
        return None if snapshot is None else now - snapshot.timestamp

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class FileLocalCache:
    """One JSON document per key under ``base_dir``."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def get(self, key: str) -> LocalSnapshot | None:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.exception("Failed to read local snapshot %s", key)
            return None
        return _parse_snapshot(key, raw)

    def set(self, key: str, snapshot: LocalSnapshot) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            tmp_path.write_text(snapshot.model_dump_json(), encoding="utf-8")
            tmp_path.replace(path)
        except OSError:
            logger.exception("Failed to write local snapshot %s", key)
            return
        logger.info(
            "Saved local snapshot %s (%s responses, %s)",
            key,
            len(snapshot.responses),
            snapshot.timestamp.isoformat(),
        )

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to delete local snapshot %s", key)

    def age(self, key: str, now: datetime) -> timedelta | None:
        snapshot = self.get(key)
        return None if snapshot is None else now - snapshot.timestamp

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"


def _parse_snapshot(key: str, raw: str) -> LocalSnapshot | None:
    try:
        return LocalSnapshot.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError):
        logger.warning("Ignoring corrupt local snapshot %s", key)
        return None
