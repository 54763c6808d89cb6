"""Session token lifecycle for async API clients."""

from tokenwarden.client import ApiClient
from tokenwarden.config import SessionConfig
from tokenwarden.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    MalformedCredential,
    NotFoundError,
    RateLimitError,
    RenewalError,
    RenewalNetworkError,
    RenewalRejected,
    RetryExhaustedError,
    ServerError,
    SessionExpiredError,
    TokenwardenError,
    ValidationError,
)
from tokenwarden.guard import CallGuard
from tokenwarden.renewal import RenewalCoordinator, RenewalState
from tokenwarden.scheduler import RenewalScheduler
from tokenwarden.session import SessionManager
from tokenwarden.storage import (
    CookieJarBackend,
    FileBackend,
    MemoryBackend,
    StorageBackend,
    StorageChannel,
    StorageEvent,
)
from tokenwarden.store import CredentialStore
from tokenwarden.teardown import SessionTeardown, build_redirect_url
from tokenwarden.types import (
    AccessClaims,
    ApiRequest,
    CredentialKeys,
    CredentialPair,
    DecodeResult,
    RenewalResponse,
    SessionStatus,
    StoredCredentials,
    TokenStatus,
)
from tokenwarden.validator import CredentialValidator

__all__ = [
    # Service
    "SessionManager",
    "SessionConfig",
    "ApiClient",
    # Components
    "CredentialStore",
    "CredentialValidator",
    "RenewalScheduler",
    "RenewalCoordinator",
    "RenewalState",
    "SessionTeardown",
    "CallGuard",
    "build_redirect_url",
    # Storage
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "CookieJarBackend",
    "StorageChannel",
    "StorageEvent",
    # Types
    "AccessClaims",
    "ApiRequest",
    "CredentialKeys",
    "CredentialPair",
    "DecodeResult",
    "RenewalResponse",
    "SessionStatus",
    "StoredCredentials",
    "TokenStatus",
    # Exceptions
    "TokenwardenError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "RateLimitError",
    "ServerError",
    "SessionExpiredError",
    "RetryExhaustedError",
    "MalformedCredential",
    "RenewalError",
    "RenewalNetworkError",
    "RenewalRejected",
]
