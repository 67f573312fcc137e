from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes an HTTP ``status_code`` and a stable ``error_code``:
    - validation_error (400)
    - unauthorized (401)
    - payment_required (402)
    - forbidden (403)
    - not_found (404)
    - rate_limited (429)
    - server_error (500)
    - unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationRequired(ServiceError):
    """No credential was presented (401)."""
    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Authentication required", **kwargs) -> None:
        super().__init__(message, **kwargs)


class Unauthorized(ServiceError):
    """A credential was presented but did not resolve to an identity (401)."""
    status_code = 401
    error_code = "unauthorized"

    def __init__(self, message: str = "Unauthorized", **kwargs) -> None:
        super().__init__(message, **kwargs)


class ForbiddenError(ServiceError):
    """Caller may not mutate this resource (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class RateLimitExceeded(ServiceError):
    """A local rate-limit policy rejected the request (429)."""
    status_code = 429
    error_code = "rate_limited"


class UpstreamRateLimited(ServiceError):
    """The LLM gateway reported it is rate limiting us (429)."""
    status_code = 429
    error_code = "rate_limited"


class UpstreamUnavailable(ServiceError):
    """The LLM gateway refused service, e.g. exhausted credits (402 or 503)."""
    status_code = 402
    error_code = "payment_required"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "server_error"


class UpstreamError(Exception):
    """Raw failure from an upstream HTTP service.

    ``status_code`` is the upstream HTTP status, or None when the request never
    produced a response (timeout, connection refused).
    """

    def __init__(self, status_code: Optional[int], message: str = "upstream request failed") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationRequired",
    "Unauthorized",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitExceeded",
    "UpstreamRateLimited",
    "UpstreamUnavailable",
    "ServerError",
    "UpstreamError",
]
