"""Shared "last activity" slot for cross-tab session consistency.

Every browsing context of one session points at the same key. Writes are
last-writer-wins; the state machine only ever reads the value to decide
whether someone else was active more recently.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Protocol


logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "session-activity:"


class SharedActivityStore(Protocol):
    def get(self) -> float | None: ...

    def set(self, last_activity: float) -> None: ...

    def clear(self) -> None: ...


def activity_key(session_id: str) -> str:
    return f"{DEFAULT_KEY_PREFIX}{session_id}"


class InMemoryActivityStore:
    """
    Process-local store. Two instances built over the same dict behave like
    two tabs sharing one storage area.
    """

    def __init__(self, key: str, backing: dict[str, float] | None = None):
        self.key = key
        self._backing = backing if backing is not None else {}
        self._lock = threading.Lock()

    def get(self) -> float | None:
        with self._lock:
            return self._backing.get(self.key)

    def set(self, last_activity: float) -> None:
        with self._lock:
            self._backing[self.key] = last_activity

    def clear(self) -> None:
        with self._lock:
            self._backing.pop(self.key, None)


class FileActivityStore:
    """
    JSON file holding {key: last_activity}. Updates rewrite the file through
    a temp file and os.replace so readers never see a partial write.
    """

    def __init__(self, path: str | os.PathLike, key: str):
        self.path = Path(path)
        self.key = key
        self._lock = threading.Lock()

    def _read(self) -> dict[str, float]:
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("Activity file %s unreadable; treating as empty", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, float]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".activity-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self) -> float | None:
        with self._lock:
            value = self._read().get(self.key)
        return float(value) if value is not None else None

    def set(self, last_activity: float) -> None:
        with self._lock:
            data = self._read()
            data[self.key] = last_activity
            self._write(data)

    def clear(self) -> None:
        with self._lock:
            data = self._read()
            if data.pop(self.key, None) is not None:
                self._write(data)


class RedisActivityStore:
    """Redis-backed slot, for tabs served by different processes."""

    def __init__(self, client, key: str, ttl_seconds: int | None = None):
        self._client = client
        self.key = key
        self._ttl = ttl_seconds

    def get(self) -> float | None:
        raw = self._client.get(self.key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return float(raw)

    def set(self, last_activity: float) -> None:
        self._client.set(self.key, repr(last_activity), ex=self._ttl)

    def clear(self) -> None:
        self._client.delete(self.key)
