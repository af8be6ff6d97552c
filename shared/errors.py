"""
Shared error handling for the Content Aggregation Gateway.

Every failure that crosses a service boundary is a ``GatewayException``.
Upstream failures carry the upstream service name, status and body so the
HTTP layer can map them to a stable client-facing status and code.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


RETRYABLE_STATUS_CODES = frozenset({408, 429})

ERROR_TITLES = {
    400: "Bad request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not found",
    429: "Too many requests",
    500: "Internal error",
    502: "Upstream integration error",
    504: "Upstream integration timeout",
}

ERROR_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    429: "too_many_requests",
}


def is_retryable_status(status_code: int) -> bool:
    """Return True for statuses worth another attempt (408, 429 and 5xx)."""
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code <= 599


def title_for_status(status_code: int) -> str:
    """Human readable title for a client-facing status."""
    return ERROR_TITLES.get(status_code, "Error")


class ErrorResponse(BaseModel):
    """Standard error response format."""

    title: str
    status: int
    detail: str
    code: str
    trace_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class GatewayException(Exception):
    """Base exception for gateway services."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self, trace_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            title=title_for_status(self.status_code),
            status=self.status_code,
            detail=self.message,
            code=self.code,
            trace_id=trace_id,
            details=self.details,
        )


class ValidationError(GatewayException):
    """Caller input rejected before any upstream call."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("bad_request", message, details, status_code=400)


class UpstreamError(GatewayException):
    """An upstream service failed; carries what the upstream told us."""

    def __init__(
        self,
        service: str,
        upstream_status: Optional[int] = None,
        response_body: Optional[str] = None,
        upstream_message: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.service = service
        self.upstream_status = upstream_status
        self.response_body = response_body
        self.upstream_message = upstream_message

        # Upstream 4xx are surfaced as-is; anything else is a bad gateway
        if upstream_status is not None and 400 <= upstream_status < 500:
            client_status = upstream_status
        else:
            client_status = 502

        super().__init__(
            ERROR_CODES.get(client_status, "external_api_error"),
            upstream_message or message or "Upstream integration error",
            {
                "service": service,
                "upstream_status": upstream_status,
                "upstream_body": response_body,
            },
            status_code=client_status,
        )
        self.summary = message or f"Error calling {service}: {upstream_status}"

    def __str__(self) -> str:
        return self.summary


class UpstreamClientError(UpstreamError):
    """Upstream rejected the request (4xx other than 408/429); never retried."""


class TransientTransportError(UpstreamError):
    """Connection failure or retryable status that outlived every retry."""


class UpstreamPayloadError(UpstreamError):
    """Upstream answered successfully but with a body we cannot use."""


class UpstreamTimeout(GatewayException):
    """Per-attempt timeouts exhausted or the overall deadline passed."""

    def __init__(self, service: str, message: str = "Upstream integration timeout", details: Optional[Dict[str, Any]] = None):
        self.service = service
        merged = {"service": service}
        merged.update(details or {})
        super().__init__("external_api_timeout", message, merged, status_code=504)
