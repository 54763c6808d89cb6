"""Session configuration.

Defaults mirror the web client this library serves: a 5 minute renewal
buffer, a 10 second bound on the renewal exchange, and the public endpoints
that never carry a token. Every field can be overridden from the
environment with a ``TOKENWARDEN_`` prefix (see :meth:`SessionConfig.from_env`).
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "TOKENWARDEN_"

DEFAULT_PUBLIC_PATHS = (
    "/auth/login",
    "/auth/register",
    "/auth/refresh",
    "/auth/forgot-password",
    "/auth/reset-password",
    "/auth/verify-email",
    "/courses",
    "/categories",
    "/search",
)


class SessionConfig(BaseModel):
    base_url: str = "http://localhost:4000/api/v1"
    renew_path: str = "/auth/refresh"
    logout_path: str = "/auth/logout"
    logout_all_path: str = "/auth/logout-all"
    heartbeat_path: str | None = None

    sign_in_url: str = "/login"
    return_param: str = "returnTo"

    buffer_seconds: int = Field(default=300, gt=0)
    skew_seconds: int = 0
    renew_timeout: float = Field(default=10.0, gt=0)
    request_timeout: float = Field(default=30.0, gt=0)
    slow_request_seconds: float = 3.0
    max_rate_limit_wait: float = 30.0
    keep_session_on_network_error: bool = False

    storage_path: str | None = None
    key_prefix: str = "tw_"
    cookie_access_name: str = "auth_token"
    cookie_refresh_name: str = "refresh_token"

    public_paths: tuple[str, ...] = DEFAULT_PUBLIC_PATHS
    client_version: str = "1.0.0"
    client_platform: str = "python"

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("public_paths", mode="before")
    @classmethod
    def _split_paths(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(p.strip() for p in value.split(",") if p.strip())
        return value

    @property
    def renew_url(self) -> str:
        return f"{self.base_url}{self.renew_path}"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> SessionConfig:
        """Build a config from ``TOKENWARDEN_*`` variables.

        Keyword overrides win over the environment. Pydantic coerces the
        string values to the declared field types.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
