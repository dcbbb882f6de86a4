"""Application error taxonomy.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer renders it with.
"""

from typing import Optional


class AppError(Exception):
    """Base application error."""
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ValidationError(AppError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    default_code = "AUTHENTICATION_FAILED"


class AuthorizationError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"


class AccountNotFound(AppError):
    status_code = 404
    default_code = "ACCOUNT_NOT_FOUND"


class AccountAlreadyExists(AppError):
    status_code = 409
    default_code = "ACCOUNT_EXISTS"


class QuotaExceeded(AppError):
    """Plan limit reached. Raised before any state is mutated."""
    status_code = 429
    default_code = "QUOTA_EXCEEDED"

    def __init__(self, message: str, plan: Optional[str] = None, limit: Optional[int] = None):
        super().__init__(message)
        self.plan = plan
        self.limit = limit


class SessionNotFound(AppError):
    """Session absent, expired, or owned by another account."""
    status_code = 404
    default_code = "SESSION_NOT_FOUND"


class SessionAlreadyRated(AppError):
    status_code = 409
    default_code = "SESSION_ALREADY_RATED"


class ConcurrentWriteConflict(AppError):
    """Optimistic concurrency retries on a session append were exhausted."""
    status_code = 503
    default_code = "CONCURRENT_WRITE_CONFLICT"


class StorageUnavailable(AppError):
    """No storage backend could be initialized."""
    status_code = 503
    default_code = "STORAGE_UNAVAILABLE"


class PaymentGatewayError(AppError):
    status_code = 502
    default_code = "PAYMENT_GATEWAY_ERROR"


class ProviderError(AppError):
    """LLM provider failure.

    ``kind`` is one of ``timeout``, ``auth``, ``rate_limited`` or ``unknown``.
    """
    status_code = 502
    default_code = "PROVIDER_ERROR"

    TIMEOUT = "timeout"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"

    def __init__(self, kind: str, message: Optional[str] = None):
        super().__init__(message or f"LLM provider error: {kind}", code=f"PROVIDER_{kind.upper()}")
        self.kind = kind
