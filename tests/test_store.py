"""Tests for CredentialStore and its storage backends."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from conftest import FakeClock
from tokenwarden.storage import CookieJarBackend, FileBackend, MemoryBackend, StorageChannel, StorageEvent
from tokenwarden.store import CredentialStore
from tokenwarden.types import CredentialKeys, CredentialPair, StoredCredentials

KEYS = CredentialKeys()


def _pair(n: int = 1) -> CredentialPair:
    return CredentialPair(access_token=f"access-{n}", refresh_token=f"refresh-{n}")


def _cookie_backend(cookies: httpx.Cookies) -> CookieJarBackend:
    return CookieJarBackend(cookies, {KEYS.access_token: "auth_token", KEYS.refresh_token: "refresh_token"})


class TestWrite:
    def test_write_computes_buffered_expiry(self, clock: FakeClock) -> None:
        store = CredentialStore([MemoryBackend()], clock=clock, buffer_seconds=300)

        stored = store.write(_pair(), 900)

        assert stored.expires_at == int(clock()) + 600
        assert store.read_access() == "access-1"
        assert store.read_refresh() == "refresh-1"
        assert store.read_expires_at() == int(clock()) + 600

    def test_second_write_replaces_whole_pair(self, clock: FakeClock) -> None:
        store = CredentialStore([MemoryBackend()], clock=clock)

        store.write(_pair(1), 900)
        clock.advance(10)
        store.write(_pair(2), 1200)

        assert store.snapshot() == StoredCredentials(
            access_token="access-2",
            refresh_token="refresh-2",
            expires_at=int(clock()) + 900,
        )

    def test_rejects_non_positive_lifetime(self, clock: FakeClock) -> None:
        store = CredentialStore([MemoryBackend()], clock=clock)
        with pytest.raises(ValueError):
            store.write(_pair(), 0)

    def test_write_is_one_ordered_update(self, clock: FakeClock) -> None:
        class Recording(MemoryBackend):
            def __init__(self) -> None:
                super().__init__()
                self.updates: list[list[str]] = []

            def update(self, values):  # type: ignore[no-untyped-def]
                self.updates.append(list(values))
                super().update(values)

        backend = Recording()
        CredentialStore([backend], clock=clock).write(_pair(), 900)

        assert backend.updates == [[KEYS.access_token, KEYS.refresh_token, KEYS.expires_at]]

    def test_listeners_see_write_and_clear(self, clock: FakeClock) -> None:
        store = CredentialStore([MemoryBackend()], clock=clock)
        seen: list[StoredCredentials | None] = []
        store.add_listener(seen.append)

        store.write(_pair(), 900)
        store.clear()

        assert seen[0] is not None and seen[0].access_token == "access-1"
        assert seen[1] is None


class TestRead:
    def test_refresh_without_access_reads_as_absent(self, clock: FakeClock) -> None:
        backend = MemoryBackend({KEYS.refresh_token: "orphan"})
        store = CredentialStore([backend], clock=clock)

        assert store.read_access() is None
        assert store.read_refresh() is None
        assert store.snapshot() is None

    def test_cookie_takes_precedence_over_local(self, clock: FakeClock) -> None:
        cookies = httpx.Cookies()
        cookies.set("auth_token", "from-cookie")
        cookies.set("refresh_token", "refresh-from-cookie")
        local = MemoryBackend({KEYS.access_token: "local", KEYS.refresh_token: "local-refresh"})
        store = CredentialStore([_cookie_backend(cookies), local], clock=clock)

        assert store.read_access() == "from-cookie"
        assert store.read_refresh() == "refresh-from-cookie"

    def test_cookie_only_pair_has_unknown_expiry(self, clock: FakeClock) -> None:
        cookies = httpx.Cookies()
        cookies.set("auth_token", "from-cookie")
        cookies.set("refresh_token", "refresh-from-cookie")
        store = CredentialStore([_cookie_backend(cookies), MemoryBackend()], clock=clock)

        snapshot = store.snapshot()
        assert snapshot is not None
        assert snapshot.expires_at == 0

    def test_write_removes_shadowing_cookie(self, clock: FakeClock) -> None:
        cookies = httpx.Cookies()
        cookies.set("auth_token", "stale-cookie")
        store = CredentialStore([_cookie_backend(cookies), MemoryBackend()], clock=clock)

        store.write(_pair(3), 900)

        assert store.read_access() == "access-3"
        assert cookies.get("auth_token") is None

    def test_unparseable_expiry_reads_as_none(self, clock: FakeClock) -> None:
        backend = MemoryBackend({KEYS.access_token: "a", KEYS.refresh_token: "r", KEYS.expires_at: "soon"})
        store = CredentialStore([backend], clock=clock)

        assert store.read_expires_at() is None
        snapshot = store.snapshot()
        assert snapshot is not None and snapshot.expires_at == 0

    def test_cookie_pair_is_not_mixed_with_durable_pair(self, clock: FakeClock) -> None:
        cookies = httpx.Cookies()
        cookies.set("auth_token", "from-cookie")
        durable = MemoryBackend({KEYS.access_token: "access-1", KEYS.refresh_token: "refresh-1", KEYS.expires_at: "99"})
        store = CredentialStore([_cookie_backend(cookies), durable], clock=clock)

        assert store.read_access() == "from-cookie"
        assert store.read_refresh() is None
        assert store.read_expires_at() is None
        assert store.snapshot() is None

    def test_cookie_session_ignores_stale_durable_expiry(self, clock: FakeClock) -> None:
        cookies = httpx.Cookies()
        cookies.set("auth_token", "from-cookie")
        cookies.set("refresh_token", "refresh-from-cookie")
        durable = MemoryBackend({KEYS.access_token: "old", KEYS.refresh_token: "old-refresh", KEYS.expires_at: "1"})
        store = CredentialStore([_cookie_backend(cookies), durable], clock=clock)

        assert store.snapshot() == StoredCredentials(
            access_token="from-cookie", refresh_token="refresh-from-cookie", expires_at=0
        )


class TestClear:
    def test_clear_empties_every_backend(self, clock: FakeClock) -> None:
        cookies = httpx.Cookies()
        cookies.set("auth_token", "cookie")
        local = MemoryBackend()
        store = CredentialStore([_cookie_backend(cookies), local], clock=clock)
        store.write(_pair(), 900)
        cookies.set("auth_token", "cookie-again")

        store.clear()

        assert store.read_access() is None
        assert store.read_expires_at() is None
        assert cookies.get("auth_token") is None
        assert local.get(KEYS.refresh_token) is None


class TestChannel:
    def test_events_reach_other_contexts_only(self, clock: FakeClock) -> None:
        channel = StorageChannel()
        store = CredentialStore([MemoryBackend()], clock=clock, channel=channel, context_id="tab-a")
        mine: list[StorageEvent] = []
        theirs: list[StorageEvent] = []
        channel.subscribe("tab-a", mine.append)
        channel.subscribe("tab-b", theirs.append)

        store.write(_pair(), 900)

        assert mine == []
        assert [e.key for e in theirs] == list(KEYS.all())
        assert theirs[0].new_value == "access-1"
        assert theirs[0].old_value is None
        assert all(e.origin == "tab-a" for e in theirs)

    def test_clear_publishes_removals(self, clock: FakeClock) -> None:
        channel = StorageChannel()
        store = CredentialStore([MemoryBackend()], clock=clock, channel=channel, context_id="tab-a")
        store.write(_pair(), 900)
        events: list[StorageEvent] = []
        channel.subscribe("tab-b", events.append)

        store.clear()

        assert {e.key for e in events} == set(KEYS.all())
        assert all(e.new_value is None for e in events)

    def test_failing_listener_does_not_block_others(self) -> None:
        channel = StorageChannel()
        received: list[StorageEvent] = []

        def boom(event: StorageEvent) -> None:
            raise RuntimeError("listener bug")

        channel.subscribe("tab-b", boom)
        channel.subscribe("tab-c", received.append)
        channel.publish(StorageEvent("k", None, "v", origin="tab-a"))

        assert len(received) == 1

    def test_unsubscribe(self) -> None:
        channel = StorageChannel()
        received: list[StorageEvent] = []
        unsubscribe = channel.subscribe("tab-b", received.append)
        unsubscribe()
        channel.publish(StorageEvent("k", None, "v", origin="tab-a"))
        assert received == []


class TestFileBackend:
    def test_survives_restart(self, tmp_path: Path, clock: FakeClock) -> None:
        path = tmp_path / "session.json"
        CredentialStore([FileBackend(path)], clock=clock).write(_pair(), 900)

        reopened = CredentialStore([FileBackend(path)], clock=clock)

        assert reopened.read_access() == "access-1"
        assert reopened.read_refresh() == "refresh-1"
        assert reopened.read_expires_at() == int(clock()) + 600

    def test_corrupt_file_reads_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        path.write_text("{not json", encoding="utf-8")

        assert FileBackend(path).get(KEYS.access_token) is None

    def test_no_temp_files_left_behind(self, tmp_path: Path, clock: FakeClock) -> None:
        store = CredentialStore([FileBackend(tmp_path / "session.json")], clock=clock)
        store.write(_pair(), 900)
        store.clear()

        assert [p.name for p in tmp_path.iterdir()] == ["session.json"]
