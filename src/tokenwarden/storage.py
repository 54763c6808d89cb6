"""Backing storage for credentials and the cross-context change channel.

A backend is a tiny key/value surface. Several managers (one per browsing
context, process or worker) may share one backend; they learn about each
other's writes through :class:`StorageEvent` messages published on a shared
:class:`StorageChannel`, never by reading each other's memory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    def get(self, key: str) -> str | None: ...

    def update(self, values: Mapping[str, str]) -> None: ...

    def delete(self, *keys: str) -> None: ...


class MemoryBackend:
    """Process-local storage; lost on restart."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def update(self, values: Mapping[str, str]) -> None:
        self._data.update(values)

    def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)


class FileBackend:
    """JSON document on disk that survives restarts.

    Every mutation rewrites the whole document through a temporary file and
    ``os.replace``, so a reader (or a crashed writer) only ever sees the old
    document or the new one.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.debug("credential file unreadable, treating as empty: %s", exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def update(self, values: Mapping[str, str]) -> None:
        data = self._load()
        data.update(values)
        self._dump(data)

    def delete(self, *keys: str) -> None:
        data = self._load()
        if not any(k in data for k in keys):
            return
        for key in keys:
            data.pop(key, None)
        self._dump(data)


class CookieJarBackend:
    """Credentials carried in an HTTP cookie jar.

    Servers that finish a flow on their side (an email verification link,
    for instance) hand the session over as cookies. ``names`` maps storage
    keys to cookie names; keys without a cookie name are ignored.
    """

    def __init__(self, cookies: httpx.Cookies, names: Mapping[str, str]) -> None:
        self.cookies = cookies
        self.names = dict(names)

    def get(self, key: str) -> str | None:
        name = self.names.get(key)
        if name is None:
            return None
        try:
            return self.cookies.get(name) or None
        except httpx.CookieConflict:
            # Same name set for several domains or paths; take the first.
            for cookie in self.cookies.jar:
                if cookie.name == name and cookie.value:
                    return cookie.value
            return None

    def update(self, values: Mapping[str, str]) -> None:
        for key, value in values.items():
            name = self.names.get(key)
            if name is not None:
                self.cookies.set(name, value)

    def delete(self, *keys: str) -> None:
        for key in keys:
            name = self.names.get(key)
            if name is None:
                continue
            for cookie in [c for c in self.cookies.jar if c.name == name]:
                self.cookies.jar.clear(cookie.domain, cookie.path, cookie.name)


@dataclass(frozen=True)
class StorageEvent:
    """A change to one storage key, as seen by other contexts."""

    key: str
    old_value: str | None
    new_value: str | None
    origin: str | None = None


StorageListener = Callable[[StorageEvent], None]


class StorageChannel:
    """Delivers storage events to every context except the one that wrote."""

    def __init__(self) -> None:
        self._subscribers: list[tuple[str, StorageListener]] = []

    def subscribe(self, context_id: str, listener: StorageListener) -> Callable[[], None]:
        entry = (context_id, listener)
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def publish(self, event: StorageEvent) -> None:
        for context_id, listener in list(self._subscribers):
            if event.origin is not None and context_id == event.origin:
                continue
            try:
                listener(event)
            except Exception:
                logger.exception("storage listener %s failed for key %s", context_id, event.key)
