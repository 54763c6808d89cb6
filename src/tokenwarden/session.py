"""Session manager: the one object an application holds for its credentials."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

import httpx

from tokenwarden.activity import ActivityTracker
from tokenwarden.client import ApiClient
from tokenwarden.config import SessionConfig
from tokenwarden.exceptions import RenewalError
from tokenwarden.guard import CallGuard
from tokenwarden.renewal import RenewalCoordinator, RenewalState
from tokenwarden.scheduler import RenewalScheduler
from tokenwarden.storage import (
    CookieJarBackend,
    FileBackend,
    MemoryBackend,
    StorageBackend,
    StorageChannel,
    StorageEvent,
)
from tokenwarden.store import CredentialStore
from tokenwarden.teardown import Redirect, SessionTeardown
from tokenwarden.types import (
    CredentialKeys,
    CredentialPair,
    SessionStatus,
    StoredCredentials,
    TokenStatus,
)
from tokenwarden.validator import CredentialValidator

logger = logging.getLogger(__name__)


def default_backends(config: SessionConfig, keys: CredentialKeys, cookies: httpx.Cookies) -> list[StorageBackend]:
    """Cookie jar first (server-driven flows win), then durable storage."""
    cookie_names = {
        keys.access_token: config.cookie_access_name,
        keys.refresh_token: config.cookie_refresh_name,
    }
    durable: StorageBackend = FileBackend(config.storage_path) if config.storage_path else MemoryBackend()
    return [CookieJarBackend(cookies, cookie_names), durable]


class SessionManager:
    """Owns the store, timer, renewal coordinator, teardown and call guard.

    Create one per application (or per browsing context) and bind it to the
    application's lifetime::

        async with SessionManager(SessionConfig.from_env()) as session:
            session.sign_in(CredentialPair(access_token=..., refresh_token=...), 900)
            profile = await session.client.get("/users/me", requires_auth=True)

    Managers that share storage should share a :class:`StorageChannel` so a
    sign-out or renewal in one is noticed by the others.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        backends: Sequence[StorageBackend] | None = None,
        channel: StorageChannel | None = None,
        redirect: Redirect | None = None,
        location: Callable[[], str | None] | None = None,
        clock: Callable[[], float] = time.time,
        context_id: str | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        cfg = self.config
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=cfg.request_timeout)
        self._clock = clock

        keys = CredentialKeys.with_prefix(cfg.key_prefix)
        if backends is None:
            backends = default_backends(cfg, keys, self.http.cookies)

        self.store = CredentialStore(
            backends,
            keys=keys,
            buffer_seconds=cfg.buffer_seconds,
            clock=clock,
            channel=channel,
            context_id=context_id,
        )
        self.validator = CredentialValidator(cfg.buffer_seconds, clock=clock, skew_seconds=cfg.skew_seconds)
        self.scheduler = RenewalScheduler(self._proactive_renew, clock=clock)
        self.teardown = SessionTeardown(
            self.store,
            self.scheduler,
            sign_in_url=cfg.sign_in_url,
            return_param=cfg.return_param,
            redirect=redirect,
            location=location,
        )
        self.coordinator = RenewalCoordinator(
            self.store,
            self.validator,
            self.http,
            renew_url=cfg.renew_url,
            timeout=cfg.renew_timeout,
            on_failure=self._on_renewal_failure,
            keep_session_on_network_error=cfg.keep_session_on_network_error,
        )
        heartbeat_url = f"{cfg.base_url}{cfg.heartbeat_path}" if cfg.heartbeat_path else None
        self.activity = ActivityTracker(self.http, heartbeat_url=heartbeat_url, clock=clock)
        self.guard = CallGuard(
            self.http,
            self.store,
            self.validator,
            self.coordinator,
            self.teardown,
            base_url=cfg.base_url,
            public_paths=cfg.public_paths,
            default_headers={
                "Accept": "application/json",
                "X-Client-Version": cfg.client_version,
                "X-Client-Platform": cfg.client_platform,
            },
            max_rate_limit_wait=cfg.max_rate_limit_wait,
            slow_request_seconds=cfg.slow_request_seconds,
            activity=self.activity,
        )
        self.client = ApiClient(self.guard)

        self.store.add_listener(self._on_store_change)
        self._unsubscribe = channel.subscribe(self.store.context_id, self.handle_storage_event) if channel else None

    async def __aenter__(self) -> SessionManager:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Resume a persisted session: arm the timer for the stored pair."""
        self._resync()
        self.scheduler.start()

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.scheduler.aclose()
        await self.activity.aclose()
        if self._owns_http:
            await self.http.aclose()

    # --- sign-in / sign-out entry points ---

    def sign_in(self, pair: CredentialPair, lifetime_seconds: int) -> StoredCredentials:
        """Install the pair returned by a successful sign-in."""
        self.teardown.reset()
        stored = self.store.write(pair, lifetime_seconds)
        logger.info("signed in, renewal due in %ds", stored.expires_at - int(self._clock()))
        return stored

    async def sign_out(self, *, logout_all: bool = False, redirect: bool = False) -> None:
        """End the session locally, telling the server on a best-effort basis."""
        access = self.store.read_access()
        if access is not None:
            path = self.config.logout_all_path if logout_all else self.config.logout_path
            try:
                await self.http.post(
                    f"{self.config.base_url}{path}",
                    headers={"Authorization": f"Bearer {access}"},
                    timeout=self.config.renew_timeout,
                )
            except httpx.HTTPError as exc:
                logger.debug("logout call failed (non-fatal): %s", exc)
        if not await self.teardown.run(reason=None, redirect=redirect):
            # Already torn down; make sure nothing was written since.
            self.scheduler.disarm()
            self.store.clear()

    # --- renewal and status ---

    async def renew(self) -> bool:
        return await self.coordinator.renew()

    def status(self) -> SessionStatus:
        access = self.store.read_access()
        token_status = self.validator.status(access)
        claims = self.validator.decode(access).claims if access else None
        return SessionStatus(
            authenticated=token_status in (TokenStatus.VALID, TokenStatus.EXPIRED_SOON),
            token_status=token_status,
            claims=claims,
            expires_at=self.store.read_expires_at() if access else None,
            renewing=self.coordinator.state is RenewalState.RENEWING,
            last_activity=self.activity.last_activity,
        )

    # --- cross-context notifications ---

    def handle_storage_event(self, event: StorageEvent) -> None:
        """Another context changed the shared storage: re-read, don't trust memory."""
        if event.key not in self.store.keys.all():
            return
        logger.info("credential storage changed by another context (%s)", event.key)
        self._resync()

    def _resync(self) -> None:
        stored = self.store.snapshot()
        if stored is None:
            self.scheduler.disarm()
            return
        self.teardown.reset()
        self._arm(stored)

    # --- internal wiring ---

    def _arm(self, stored: StoredCredentials) -> None:
        if stored.expires_at > 0:
            self.scheduler.arm_for(stored.expires_at)
            return
        # No stored expiry (set by a server-driven flow): use the token's own.
        delay = self.validator.seconds_until_renewal(stored.access_token)
        self.scheduler.arm(delay if delay is not None else 0)

    def _on_store_change(self, stored: StoredCredentials | None) -> None:
        if stored is None:
            self.scheduler.disarm()
        else:
            self._arm(stored)

    async def _proactive_renew(self) -> bool:
        access = self.store.read_access()
        if access is not None and self.validator.status(access) is TokenStatus.VALID:
            # Renewed elsewhere since the timer was set; follow the token's expiry.
            delay = self.validator.seconds_until_renewal(access)
            self.scheduler.arm(delay if delay is not None else 0)
            return True
        logger.info("proactive renewal")
        return await self.coordinator.renew()

    async def _on_renewal_failure(self, error: RenewalError) -> None:
        await self.teardown.run(reason="session_expired")
