"""Shared fixtures: a controllable clock, real JWTs and a respx router."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Iterator
from typing import Any

import httpx
import jwt
import pytest
import respx

BASE_URL = "https://lms.test/api/v1"
RENEW_URL = f"{BASE_URL}/auth/refresh"
SECRET = "tokenwarden-test-signing-secret-0123456789"
START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def issue_token(now: float, lifetime: int = 900, **claims: Any) -> str:
    payload: dict[str, Any] = {
        "sub": "user-42",
        "role": "student",
        "permissions": ["courses:read"],
        "iat": int(now),
        "exp": int(now) + lifetime,
        "iss": "lms-api",
        "aud": "lms-web",
        "jti": uuid.uuid4().hex,
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, SECRET, algorithm="HS256")


def renewal_response(access_token: str, refresh_token: str | None = "rt-2", expires_in: int = 900) -> httpx.Response:
    data: dict[str, Any] = {"accessToken": access_token, "expiresIn": expires_in}
    if refresh_token is not None:
        data["refreshToken"] = refresh_token
    return httpx.Response(200, json={"success": True, "data": data})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token(clock: FakeClock) -> Callable[..., str]:
    """Issue a token relative to the fake clock's current time."""

    def _issue(lifetime: int = 900, **claims: Any) -> str:
        return issue_token(clock(), lifetime, **claims)

    return _issue


@pytest.fixture
def router() -> Iterator[respx.MockRouter]:
    with respx.mock(assert_all_called=False) as r:
        yield r
