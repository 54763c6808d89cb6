"""Pydantic models for credentials, claims and session status."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from tokenwarden.exceptions import MalformedCredential


class CredentialPair(BaseModel):
    """An access token together with the refresh token that renews it."""

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1, repr=False)


class StoredCredentials(BaseModel):
    """A complete pair as read back from the store, with its buffered expiry."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = Field(repr=False)
    expires_at: int

    @property
    def pair(self) -> CredentialPair:
        return CredentialPair(access_token=self.access_token, refresh_token=self.refresh_token)


class CredentialKeys(BaseModel):
    """Storage keys under which the pair and its expiry are persisted."""

    model_config = ConfigDict(frozen=True)

    access_token: str = "access_token"
    refresh_token: str = "refresh_token"
    expires_at: str = "expires_at"

    @classmethod
    def with_prefix(cls, prefix: str) -> CredentialKeys:
        return cls(
            access_token=f"{prefix}access_token",
            refresh_token=f"{prefix}refresh_token",
            expires_at=f"{prefix}expires_at",
        )

    def all(self) -> tuple[str, str, str]:
        return (self.access_token, self.refresh_token, self.expires_at)


class AccessClaims(BaseModel):
    """Claims embedded in an access token.

    Only ``exp`` is required; everything else is informational for the
    client. Unknown claims are preserved.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    sub: str | None = None
    role: str | None = Field(default=None, validation_alias=AliasChoices("role", "userType"))
    permissions: list[str] = Field(default_factory=list)
    iat: int | None = None
    exp: int
    iss: str | None = None
    aud: str | list[str] | None = None
    jti: str | None = None
    sid: str | None = Field(default=None, validation_alias=AliasChoices("sid", "sessionId", "deviceId"))
    refresh_verified: bool = Field(
        default=False, validation_alias=AliasChoices("refresh_verified", "refreshVerified")
    )


class TokenStatus(str, Enum):
    VALID = "valid"
    EXPIRED_SOON = "expired_soon"
    EXPIRED = "expired"
    INVALID = "invalid"


@dataclass(frozen=True)
class DecodeResult:
    """Tagged outcome of decoding a token: claims on success, error otherwise."""

    claims: AccessClaims | None = None
    error: MalformedCredential | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


class RenewalResponse(BaseModel):
    """Body returned by the renewal endpoint (after unwrapping ``data``)."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(min_length=1, validation_alias=AliasChoices("accessToken", "access_token", "token"))
    refresh_token: str | None = Field(default=None, validation_alias=AliasChoices("refreshToken", "refresh_token"))
    expires_in: int = Field(default=900, gt=0, validation_alias=AliasChoices("expiresIn", "expires_in"))


class ApiRequest(BaseModel):
    """Description of one outbound business call."""

    method: str = "GET"
    path: str
    params: dict[str, Any] | None = None
    json_body: Any = None
    form: dict[str, Any] | None = None
    files: dict[str, Any] | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    requires_auth: bool = False


class SessionStatus(BaseModel):
    """Answer to the status query of a session."""

    authenticated: bool
    token_status: TokenStatus
    claims: AccessClaims | None = None
    expires_at: int | None = None
    renewing: bool = False
    last_activity: float | None = None
