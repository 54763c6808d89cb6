"""Credential store: the single owner of the persisted credential pair."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence

from tokenwarden.storage import StorageBackend, StorageChannel, StorageEvent
from tokenwarden.types import CredentialKeys, CredentialPair, StoredCredentials

logger = logging.getLogger(__name__)

# Called with the new snapshot after a write, or None after a clear.
StoreListener = Callable[[StoredCredentials | None], None]


class CredentialStore:
    """Persists the current pair across several backends.

    ``backends`` are listed in read priority order: the first backend that
    holds an access token supplies the whole pair. Writes land in the last
    (durable) backend and wipe any copies in the others so the freshly
    written pair is the one read back. Nothing is cached; every read goes
    to the backends.
    """

    def __init__(
        self,
        backends: Sequence[StorageBackend],
        *,
        keys: CredentialKeys | None = None,
        buffer_seconds: int = 300,
        clock: Callable[[], float] = time.time,
        channel: StorageChannel | None = None,
        context_id: str | None = None,
    ) -> None:
        if not backends:
            raise ValueError("at least one storage backend is required")
        if buffer_seconds <= 0:
            raise ValueError("buffer_seconds must be positive")
        self.backends = list(backends)
        self.keys = keys or CredentialKeys()
        self.buffer_seconds = buffer_seconds
        self.channel = channel
        self.context_id = context_id or uuid.uuid4().hex
        self._clock = clock
        self._listeners: list[StoreListener] = []

    @property
    def durable(self) -> StorageBackend:
        return self.backends[-1]

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def _values(self) -> dict[str, str | None]:
        # The whole pair comes from the first backend holding an access
        # token; keys are never mixed across backends.
        for backend in self.backends:
            if backend.get(self.keys.access_token):
                return {key: backend.get(key) or None for key in self.keys.all()}
        return dict.fromkeys(self.keys.all())

    # --- reads ---

    def read_access(self) -> str | None:
        return self._values()[self.keys.access_token]

    def read_refresh(self) -> str | None:
        # A refresh token without its access token is half a pair: absent.
        return self._values()[self.keys.refresh_token]

    def read_expires_at(self) -> int | None:
        return _parse_expiry(self._values()[self.keys.expires_at])

    def snapshot(self) -> StoredCredentials | None:
        values = self._values()
        access = values[self.keys.access_token]
        refresh = values[self.keys.refresh_token]
        if access is None or refresh is None:
            return None
        expires_at = _parse_expiry(values[self.keys.expires_at])
        if expires_at is None:
            # Set by a flow that only knows the tokens; renew on first use.
            expires_at = 0
        return StoredCredentials(access_token=access, refresh_token=refresh, expires_at=expires_at)

    # --- writes ---

    def write(self, pair: CredentialPair, lifetime_seconds: int) -> StoredCredentials:
        """Replace the current pair and compute its buffered expiry."""
        if lifetime_seconds <= 0:
            raise ValueError("lifetime_seconds must be positive")
        expires_at = int(self._clock()) + int(lifetime_seconds) - self.buffer_seconds
        old = self._values()

        values = {
            self.keys.access_token: pair.access_token,
            self.keys.refresh_token: pair.refresh_token,
            self.keys.expires_at: str(expires_at),
        }
        self.durable.update(values)
        for backend in self.backends[:-1]:
            backend.delete(*self.keys.all())

        stored = StoredCredentials(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=expires_at,
        )
        logger.debug("credential pair written, renewal due at %d", expires_at)
        self._publish(old, values)
        self._notify(stored)
        return stored

    def clear(self) -> None:
        """Remove every trace of the pair from every backend."""
        old = self._values()
        for backend in self.backends:
            backend.delete(*self.keys.all())
        logger.debug("credential pair cleared")
        self._publish(old, {})
        self._notify(None)

    def _publish(self, old: dict[str, str | None], new: dict[str, str]) -> None:
        if self.channel is None:
            return
        for key in self.keys.all():
            if old.get(key) == new.get(key):
                continue
            self.channel.publish(StorageEvent(key, old.get(key), new.get(key), origin=self.context_id))

    def _notify(self, stored: StoredCredentials | None) -> None:
        for listener in list(self._listeners):
            listener(stored)


def _parse_expiry(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        logger.debug("ignoring unparseable stored expiry %r", raw)
        return None
