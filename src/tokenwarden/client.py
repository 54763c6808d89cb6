"""Business API client. Every call goes through the :class:`CallGuard`."""

from __future__ import annotations

from typing import Any

import httpx

from tokenwarden.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TokenwardenError,
    ValidationError,
)
from tokenwarden.guard import CallGuard
from tokenwarden.types import ApiRequest


# ---------------------------------------------------------------------------
# Shared response handling
# ---------------------------------------------------------------------------


def _extract_error_message(resp: httpx.Response, fallback: str) -> str:
    """Best-effort extraction of the server's error message."""
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return str(body.get("message") or fallback)


def _raise_for_status(resp: httpx.Response) -> None:
    """Map HTTP error status codes to exceptions."""
    status = resp.status_code
    if status == 400:
        raise ValidationError(_extract_error_message(resp, "Bad request"), status_code=status)
    if status == 401:
        raise AuthenticationError(_extract_error_message(resp, "Authentication failed"), status_code=status)
    if status == 403:
        raise AuthorizationError(_extract_error_message(resp, "Insufficient permissions"), status_code=status)
    if status == 404:
        raise NotFoundError(_extract_error_message(resp, "Resource not found"), status_code=status)
    if status == 409:
        raise ConflictError(_extract_error_message(resp, "Conflict"), status_code=status)
    if status == 429:
        raise RateLimitError(_extract_error_message(resp, "Rate limit exceeded"), status_code=status)
    if status >= 500:
        raise ServerError(_extract_error_message(resp, f"Server error: {status}"), status_code=status)
    if status >= 400:
        raise TokenwardenError(_extract_error_message(resp, f"Unexpected error: {status}"), status_code=status)


def _handle_response(resp: httpx.Response) -> Any:
    """Raise for error statuses and unwrap the API envelope."""
    _raise_for_status(resp)
    if resp.status_code == 204 or not resp.content:
        return None
    body = resp.json()
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


# ---------------------------------------------------------------------------
# Async client
# ---------------------------------------------------------------------------


class ApiClient:
    """Async client for business endpoints.

    Usage::

        async with SessionManager(SessionConfig(base_url="https://lms.test/api/v1")) as session:
            enrollments = await session.client.get("/users/me/enrollments", requires_auth=True)
    """

    def __init__(self, guard: CallGuard) -> None:
        self.guard = guard

    async def request(self, request: ApiRequest) -> Any:
        resp = await self.guard.send(request)
        return _handle_response(resp)

    async def get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        requires_auth: bool = False,
    ) -> Any:
        return await self.request(ApiRequest(method="GET", path=path, params=params, requires_auth=requires_auth))

    async def post(self, path: str, body: Any = None, *, requires_auth: bool = False) -> Any:
        return await self.request(ApiRequest(method="POST", path=path, json_body=body, requires_auth=requires_auth))

    async def put(self, path: str, body: Any = None, *, requires_auth: bool = False) -> Any:
        return await self.request(ApiRequest(method="PUT", path=path, json_body=body, requires_auth=requires_auth))

    async def patch(self, path: str, body: Any = None, *, requires_auth: bool = False) -> Any:
        return await self.request(ApiRequest(method="PATCH", path=path, json_body=body, requires_auth=requires_auth))

    async def delete(self, path: str, *, requires_auth: bool = False) -> Any:
        return await self.request(ApiRequest(method="DELETE", path=path, requires_auth=requires_auth))

    async def upload(
        self,
        path: str,
        files: dict[str, Any],
        *,
        data: dict[str, Any] | None = None,
        requires_auth: bool = False,
    ) -> Any:
        """POST a multipart form. ``files`` takes anything httpx accepts."""
        return await self.request(
            ApiRequest(method="POST", path=path, form=data, files=files, requires_auth=requires_auth)
        )

    async def download(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        requires_auth: bool = False,
    ) -> bytes:
        """GET a resource and return the raw body."""
        resp = await self.guard.send(ApiRequest(method="GET", path=path, params=params, requires_auth=requires_auth))
        _raise_for_status(resp)
        return resp.content
