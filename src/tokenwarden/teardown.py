"""Session teardown: clear credentials, stop the timer, send the user to sign in."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from tokenwarden.scheduler import RenewalScheduler
from tokenwarden.store import CredentialStore

logger = logging.getLogger(__name__)

Redirect = Callable[[str], Awaitable[None] | None]


def _log_redirect(url: str) -> None:
    logger.warning("session ended; sign in again at %s", url)


def build_redirect_url(
    sign_in_url: str,
    return_to: str | None = None,
    *,
    reason: str | None = "session_expired",
    return_param: str = "returnTo",
) -> str:
    """Sign-in URL carrying the destination the user was headed to."""
    parts = urlsplit(sign_in_url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if return_to and urlsplit(return_to).path.rstrip("/") != parts.path.rstrip("/"):
        query.append((return_param, return_to))
    if reason:
        query.append(("reason", reason))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class SessionTeardown:
    """Terminal cleanup when the session cannot be renewed.

    Runs at most once per session generation: the first call clears the
    store, disarms the scheduler and redirects; later or concurrent calls do
    nothing until :meth:`reset` starts a new generation (on sign-in).
    Guards compare :attr:`generation` before and after waiting to drop
    retries queued against a session that has since been torn down.
    """

    def __init__(
        self,
        store: CredentialStore,
        scheduler: RenewalScheduler,
        *,
        sign_in_url: str = "/login",
        return_param: str = "returnTo",
        redirect: Redirect | None = None,
        location: Callable[[], str | None] | None = None,
    ) -> None:
        self.store = store
        self.scheduler = scheduler
        self.sign_in_url = sign_in_url
        self.return_param = return_param
        self._redirect = redirect or _log_redirect
        self._location = location
        self._torn_down = False
        self.generation = 0
        self.redirect_count = 0

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def reset(self) -> None:
        self._torn_down = False

    async def run(
        self,
        return_to: str | None = None,
        *,
        reason: str | None = "session_expired",
        redirect: bool = True,
    ) -> bool:
        """Tear the session down. Returns False if it was already torn down."""
        if self._torn_down:
            return False
        # Flip state before any await so concurrent callers see it.
        self._torn_down = True
        self.generation += 1
        self.scheduler.disarm()
        self.store.clear()
        logger.info("session torn down (%s)", reason or "signed out")
        if not redirect:
            return True

        if return_to is None and self._location is not None:
            return_to = self._location()
        url = build_redirect_url(self.sign_in_url, return_to, reason=reason, return_param=self.return_param)
        self.redirect_count += 1
        result = self._redirect(url)
        if asyncio.iscoroutine(result):
            await result
        return True
