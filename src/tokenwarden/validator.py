"""Access token inspection: decode claims and classify freshness."""

from __future__ import annotations

import time
from collections.abc import Callable

import jwt
from pydantic import ValidationError as PydanticValidationError

from tokenwarden.exceptions import MalformedCredential
from tokenwarden.types import AccessClaims, DecodeResult, TokenStatus

# Signature, audience and issuer are the server's business; the client only
# reads the claims to decide when to renew.
_DECODE_OPTIONS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


class CredentialValidator:
    """Pure checks on an access token. Never touches storage or the network.

    ``status`` compares the token's own ``exp`` claim against the clock in
    whole epoch seconds:

    - ``expired`` once ``now >= exp``
    - ``expired_soon`` once ``now >= exp - buffer_seconds``
    - ``valid`` before that
    - ``invalid`` when there is no token at all

    A token that is present but cannot be decoded reports ``expired``: it
    is never trusted, and a renewal may still recover the session.

    ``skew_seconds`` shifts the local clock forward before comparing; the
    default of 0 trusts local time.
    """

    def __init__(
        self,
        buffer_seconds: int = 300,
        *,
        clock: Callable[[], float] = time.time,
        skew_seconds: int = 0,
    ) -> None:
        if buffer_seconds <= 0:
            raise ValueError("buffer_seconds must be positive")
        self.buffer_seconds = buffer_seconds
        self.skew_seconds = skew_seconds
        self._clock = clock

    def now(self) -> int:
        return int(self._clock()) + self.skew_seconds

    def decode(self, token: str | None) -> DecodeResult:
        if not token:
            return DecodeResult(error=MalformedCredential("no token"))
        try:
            payload = jwt.decode(token, options=_DECODE_OPTIONS)
        except jwt.InvalidTokenError as exc:
            return DecodeResult(error=MalformedCredential(f"undecodable token: {exc}"))
        if not isinstance(payload, dict):
            return DecodeResult(error=MalformedCredential("token payload is not an object"))
        try:
            claims = AccessClaims.model_validate(payload)
        except PydanticValidationError as exc:
            return DecodeResult(error=MalformedCredential(f"unusable claims: {exc.error_count()} error(s)"))
        return DecodeResult(claims=claims)

    def status(self, token: str | None) -> TokenStatus:
        if not token:
            return TokenStatus.INVALID
        result = self.decode(token)
        if result.claims is None:
            return TokenStatus.EXPIRED
        return self.status_of(result.claims)

    def status_of(self, claims: AccessClaims) -> TokenStatus:
        now = self.now()
        if now >= claims.exp:
            return TokenStatus.EXPIRED
        if now >= claims.exp - self.buffer_seconds:
            return TokenStatus.EXPIRED_SOON
        return TokenStatus.VALID

    def seconds_until_renewal(self, token: str | None) -> int | None:
        """Seconds until the token enters the renewal window (may be negative)."""
        result = self.decode(token)
        if result.claims is None:
            return None
        return result.claims.exp - self.buffer_seconds - self.now()
