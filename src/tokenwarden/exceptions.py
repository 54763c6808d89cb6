"""Exception hierarchy for tokenwarden."""

from __future__ import annotations


class TokenwardenError(Exception):
    """Base exception for all tokenwarden errors."""

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(TokenwardenError):
    """Raised when authentication fails (401)."""


class AuthorizationError(TokenwardenError):
    """Raised when the caller lacks permission (403)."""


class NotFoundError(TokenwardenError):
    """Raised when a requested resource does not exist (404)."""


class ValidationError(TokenwardenError):
    """Raised when the server rejects input as invalid (400)."""


class ConflictError(TokenwardenError):
    """Raised on duplicate or conflicting resources (409)."""


class RateLimitError(TokenwardenError):
    """Raised when the server rate-limits the caller (429)."""


class ServerError(TokenwardenError):
    """Raised on unexpected server-side errors (5xx)."""


class SessionExpiredError(AuthenticationError):
    """Raised when a call needs a session and none can be obtained."""


class RetryExhaustedError(TokenwardenError):
    """Raised when a call is rejected again after a successful renewal.

    Not an :class:`AuthenticationError`: callers must not answer it with
    another renewal.
    """


class MalformedCredential(TokenwardenError):
    """An access token whose claims cannot be decoded."""


class RenewalError(TokenwardenError):
    """Base class for failed renewal exchanges."""


class RenewalNetworkError(RenewalError):
    """The renewal exchange did not complete (transport error, timeout, 5xx)."""


class RenewalRejected(RenewalError):
    """The server refused the refresh token, or none was available."""
