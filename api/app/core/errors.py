"""Error taxonomy shared by services, routes, and the Python client.

Invariants:
- Every error carries a stable machine-readable ``code``.
- ``retryable`` is only true for timeouts and connection-level failures.
"""

from __future__ import annotations

from typing import Any


class CommsError(Exception):
    """Base class for surfaced communication-service errors."""

    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None, *, detail: Any = None) -> None:
        self.message = message or self.code
        self.detail = detail
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.detail is not None:
            payload["context"] = self.detail
        return payload


class ValidationError(CommsError):
    """Malformed input rejected before any write."""

    code = "validation_error"
    status_code = 422


class PermissionDeniedError(CommsError):
    """Ownership or role policy rejected the operation."""

    code = "permission_denied"
    status_code = 403


class NotFoundError(CommsError):
    code = "not_found"
    status_code = 404


class ConflictError(CommsError):
    """Unique constraint or state conflict, e.g. a duplicate opt-out."""

    code = "conflict"
    status_code = 409


class RequestTimeoutError(CommsError, TimeoutError):
    """A bounded-wait call did not resolve in time."""

    code = "timeout"
    status_code = 504
    retryable = True


class TransientNetworkError(CommsError):
    """Connection-level failure; callers may retry with backoff."""

    code = "network_error"
    status_code = 503
    retryable = True


ERRORS_BY_STATUS: dict[int, type[CommsError]] = {
    400: ValidationError,
    401: PermissionDeniedError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
    422: ValidationError,
    503: TransientNetworkError,
    504: RequestTimeoutError,
}

ERRORS_BY_CODE: dict[str, type[CommsError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        PermissionDeniedError,
        NotFoundError,
        ConflictError,
        RequestTimeoutError,
        TransientNetworkError,
    )
}


def error_for_response(status_code: int, payload: Any) -> CommsError:
    """Rebuild a taxonomy error from an HTTP error response."""
    code = payload.get("code") if isinstance(payload, dict) else None
    detail = payload.get("detail") if isinstance(payload, dict) else None
    cls = ERRORS_BY_CODE.get(code or "") or ERRORS_BY_STATUS.get(status_code)
    if cls is None:
        cls = TransientNetworkError if status_code >= 500 else CommsError
    message = detail if isinstance(detail, str) else f"HTTP {status_code}"
    return cls(message, detail=detail if not isinstance(detail, str) else None)
