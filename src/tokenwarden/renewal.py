"""Renewal coordinator: one refresh exchange at a time, shared by every caller."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from tokenwarden.exceptions import RenewalError, RenewalNetworkError, RenewalRejected
from tokenwarden.store import CredentialStore
from tokenwarden.types import CredentialPair, RenewalResponse
from tokenwarden.validator import CredentialValidator

logger = logging.getLogger(__name__)

FailureHandler = Callable[[RenewalError], Awaitable[None] | None]


class RenewalState(str, enum.Enum):
    IDLE = "idle"
    RENEWING = "renewing"


class RenewalCoordinator:
    """Trades the refresh token for a new pair, at most once concurrently.

    The first caller of :meth:`renew` starts the exchange; every caller that
    arrives before it settles awaits the same task and receives the same
    outcome. The task clears the in-flight slot itself before returning, so
    anyone who asks after settlement gets a fresh exchange and nobody waits
    on an exchange that started after they asked.

    Failures never escape :meth:`renew`: they become ``False`` and are kept
    in :attr:`last_error`. On failure the store is cleared and
    ``on_failure`` runs, except for network failures when
    ``keep_session_on_network_error`` is set. A failure is ignored when the
    stored refresh token changed while the exchange was in flight.
    """

    def __init__(
        self,
        store: CredentialStore,
        validator: CredentialValidator,
        http: httpx.AsyncClient,
        *,
        renew_url: str,
        timeout: float = 10.0,
        on_failure: FailureHandler | None = None,
        keep_session_on_network_error: bool = False,
    ) -> None:
        self.store = store
        self.validator = validator
        self.renew_url = renew_url
        self.timeout = timeout
        self.on_failure = on_failure
        self.keep_session_on_network_error = keep_session_on_network_error
        self._http = http
        self._inflight: asyncio.Task[bool] | None = None
        self.last_error: RenewalError | None = None
        self.exchange_count = 0

    @property
    def state(self) -> RenewalState:
        return RenewalState.RENEWING if self._inflight is not None else RenewalState.IDLE

    async def renew(self) -> bool:
        """Return True once a fresh pair is in the store, False otherwise."""
        task = self._inflight
        if task is None:
            task = asyncio.ensure_future(self._run())
            self._inflight = task
        else:
            logger.debug("joining in-flight renewal")
        # Shielded so a cancelled waiter does not abort the shared exchange.
        return await asyncio.shield(task)

    async def _run(self) -> bool:
        sent = self.store.read_refresh()
        try:
            renewed = await self._exchange(sent)
        except RenewalError as exc:
            if self.store.read_refresh() != sent:
                # Signed out or replaced elsewhere while we waited; leave the store alone.
                logger.info("session changed during renewal; ignoring failure: %s", exc)
                return self.store.read_access() is not None
            self.last_error = exc
            await self._fail(exc)
            return False
        else:
            self.last_error = None
            return renewed
        finally:
            self._inflight = None

    async def _exchange(self, refresh_token: str | None) -> bool:
        if refresh_token is None:
            raise RenewalRejected("no refresh token available")

        self.exchange_count += 1
        try:
            resp = await self._http.post(
                self.renew_url,
                json={"refreshToken": refresh_token},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise RenewalNetworkError(f"renewal timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise RenewalNetworkError(f"renewal request failed: {exc}") from exc

        if resp.status_code >= 500:
            raise RenewalNetworkError(f"renewal endpoint error: {resp.status_code}", status_code=resp.status_code)
        if not resp.is_success:
            raise RenewalRejected(f"refresh token rejected: {resp.status_code}", status_code=resp.status_code)

        renewed = _parse_renewal(resp)
        if not self.validator.decode(renewed.access_token).ok:
            raise RenewalRejected("renewal returned an undecodable access token")

        pair = CredentialPair(
            access_token=renewed.access_token,
            refresh_token=renewed.refresh_token or refresh_token,
        )
        if self.store.read_refresh() != refresh_token:
            # Signed out or replaced by another context while we waited.
            logger.info("session changed during renewal; discarding the result")
            return self.store.read_access() is not None
        self.store.write(pair, renewed.expires_in)
        logger.info("credential renewed")
        return True

    async def _fail(self, error: RenewalError) -> None:
        if isinstance(error, RenewalNetworkError) and self.keep_session_on_network_error:
            logger.warning("renewal failed, keeping session for a later retry: %s", error)
            return
        logger.warning("renewal failed, ending session: %s", error)
        self.store.clear()
        if self.on_failure is None:
            return
        result = self.on_failure(error)
        if asyncio.iscoroutine(result):
            await result


def _parse_renewal(resp: httpx.Response) -> RenewalResponse:
    try:
        body: Any = resp.json()
    except ValueError as exc:
        raise RenewalRejected("renewal response is not JSON") from exc
    if isinstance(body, dict):
        if body.get("success") is False:
            raise RenewalRejected(str(body.get("message") or "renewal refused"))
        body = body.get("data", body)
    try:
        return RenewalResponse.model_validate(body)
    except PydanticValidationError as exc:
        raise RenewalRejected("renewal response is missing fields") from exc
