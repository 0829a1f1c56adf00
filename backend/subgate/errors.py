from __future__ import annotations

from typing import Optional

from fastapi.responses import JSONResponse

from .schemas import ErrorResponse


class GatewayError(Exception):
    """Terminal pipeline outcome rendered as a JSON error response."""

    status_code = 500
    error = "Internal Server Error"
    outcome = "internal_error"

    def __init__(self, message: Optional[str] = None, *, retry_after: Optional[int] = None) -> None:
        super().__init__(message or self.error)
        self.message = message
        self.retry_after = retry_after

    def to_response(self) -> JSONResponse:
        body = ErrorResponse(error=self.error, retry_after=self.retry_after, message=self.message)
        headers = {"Retry-After": str(self.retry_after)} if self.retry_after is not None else None
        return JSONResponse(
            status_code=self.status_code,
            content=body.model_dump(exclude_none=True),
            headers=headers,
        )


class ClientThrottled(GatewayError):
    status_code = 429
    error = "Too Many Requests"
    outcome = "rate_limited"


class ClientBanned(GatewayError):
    status_code = 403
    error = "Too Many Authentication Failures"
    outcome = "banned"


class Unauthenticated(GatewayError):
    status_code = 401
    error = "Unauthorized"
    outcome = "unauthorized"


class Misconfigured(GatewayError):
    status_code = 500
    error = "Service Not Configured"
    outcome = "misconfigured"


class NotFound(GatewayError):
    status_code = 404
    error = "Not Found"
    outcome = "not_found"


class UpstreamUnavailable(GatewayError):
    """Blob source failure; surfaced to the client as an internal error."""
