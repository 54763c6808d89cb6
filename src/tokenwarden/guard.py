"""Outbound call guard: attach the access token and recover from one 401."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable, Mapping

import httpx

from tokenwarden.activity import ActivityTracker
from tokenwarden.exceptions import RetryExhaustedError, SessionExpiredError
from tokenwarden.renewal import RenewalCoordinator
from tokenwarden.store import CredentialStore
from tokenwarden.teardown import SessionTeardown
from tokenwarden.types import ApiRequest, TokenStatus
from tokenwarden.validator import CredentialValidator

logger = logging.getLogger(__name__)


def _request_id() -> str:
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _retry_after_seconds(resp: httpx.Response, default: float = 1.0) -> float:
    raw = resp.headers.get("retry-after")
    if raw is None:
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        return default


def _exhausted(request: ApiRequest) -> RetryExhaustedError:
    return RetryExhaustedError(f"{request.method} {request.path} rejected again after renewal", status_code=401)


class CallGuard:
    """Wraps every business call.

    Before sending, the access token's status decides what happens:

    - ``valid``: attach it
    - ``expired_soon`` / ``expired``: wait for a renewal, then attach
      whatever token the store holds
    - ``invalid`` (no token): send without one, or end the session and
      raise :class:`SessionExpiredError` when the request requires auth

    A 401 answer is retried exactly once after a renewal. A second 401
    raises :class:`RetryExhaustedError`; a failed renewal hands the original
    401 back to the caller. A 429 is resent once after its Retry-After, and a
    401 on that resend still gets the renewal retry. Public paths never
    carry a token.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        store: CredentialStore,
        validator: CredentialValidator,
        coordinator: RenewalCoordinator,
        teardown: SessionTeardown,
        *,
        base_url: str = "",
        public_paths: Iterable[str] = (),
        default_headers: Mapping[str, str] | None = None,
        max_rate_limit_wait: float = 30.0,
        slow_request_seconds: float = 3.0,
        activity: ActivityTracker | None = None,
    ) -> None:
        self.store = store
        self.validator = validator
        self.coordinator = coordinator
        self.teardown = teardown
        self.base_url = base_url.rstrip("/")
        self.public_paths = tuple(public_paths)
        self.default_headers = dict(default_headers or {})
        self.max_rate_limit_wait = max_rate_limit_wait
        self.slow_request_seconds = slow_request_seconds
        self.activity = activity
        self._http = http

    def is_public(self, path: str) -> bool:
        return any(p in path for p in self.public_paths)

    async def send(self, request: ApiRequest) -> httpx.Response:
        public = self.is_public(request.path)
        generation = self.teardown.generation

        token = None if public else await self._token_for(request)
        resp = await self._send(request, token)

        # Each kind of retry happens at most once, in whatever order the
        # answers call for them.
        renewed_retry = rate_limit_retry = False
        while True:
            if resp.status_code == 401 and not public and not renewed_retry:
                renewed_retry = True
                rejected = resp
                resp, token = await self._retry_once(request, resp, token, generation)
                if resp is rejected:
                    break
            elif resp.status_code == 429 and not rate_limit_retry:
                rate_limit_retry = True
                resp = await self._retry_rate_limited(request, resp, token)
            elif resp.status_code == 401 and renewed_retry and not public:
                raise _exhausted(request)
            else:
                break

        if token is not None and self.activity is not None:
            self.activity.touch(token)
        return resp

    async def _token_for(self, request: ApiRequest) -> str | None:
        access = self.store.read_access()
        status = self.validator.status(access)
        if status is TokenStatus.VALID:
            return access

        if status is TokenStatus.INVALID:
            if request.requires_auth:
                await self.teardown.run(reason="unauthenticated")
                raise SessionExpiredError(f"{request.method} {request.path} requires a session", status_code=401)
            return None

        logger.debug("access token %s, renewing before %s %s", status.value, request.method, request.path)
        await self.coordinator.renew()
        access = self.store.read_access()
        if access is None and request.requires_auth:
            raise SessionExpiredError("session could not be renewed", status_code=401)
        return access

    async def _retry_once(
        self,
        request: ApiRequest,
        rejected: httpx.Response,
        sent_token: str | None,
        generation: int,
    ) -> tuple[httpx.Response, str | None]:
        current = self.store.read_access()
        if current is not None and current != sent_token and self.validator.status(current) is TokenStatus.VALID:
            # Someone renewed while this call was in flight; reuse their result.
            logger.debug("401 on a superseded token, retrying with the current one")
        else:
            renewed = await self.coordinator.renew()
            if not renewed:
                return rejected, sent_token
            if self.teardown.generation != generation:
                raise SessionExpiredError("session ended while waiting to retry", status_code=401)
            current = self.store.read_access()
            if current is None:
                return rejected, sent_token

        resp = await self._send(request, current)
        if resp.status_code == 401:
            raise _exhausted(request)
        return resp, current

    async def _retry_rate_limited(
        self,
        request: ApiRequest,
        resp: httpx.Response,
        token: str | None,
    ) -> httpx.Response:
        delay = _retry_after_seconds(resp)
        if delay > self.max_rate_limit_wait:
            return resp
        logger.warning("rate limited on %s, retrying after %.1fs", request.path, delay)
        await asyncio.sleep(delay)
        return await self._send(request, token)

    async def _send(self, request: ApiRequest, token: str | None) -> httpx.Response:
        headers = {**self.default_headers, **request.headers, "X-Request-ID": _request_id()}
        if token is not None:
            headers["Authorization"] = f"Bearer {token}"
        url = request.path if request.path.startswith(("http://", "https://")) else f"{self.base_url}{request.path}"
        req = self._http.build_request(
            request.method.upper(),
            url,
            params=request.params,
            json=request.json_body,
            data=request.form,
            files=request.files,
            headers=headers,
        )
        started = time.perf_counter()
        resp = await self._http.send(req)
        elapsed = time.perf_counter() - started
        if elapsed > self.slow_request_seconds:
            logger.warning("slow API request: %s %s took %.0fms", request.method.upper(), request.path, elapsed * 1000)
        return resp
