"""
Translation of failed upstream responses into typed gateway errors.
"""

import json
from typing import Optional

import httpx

from shared.errors import (
    TransientTransportError,
    UpstreamClientError,
    UpstreamError,
    is_retryable_status,
)
from shared.logging import get_logger


logger = get_logger("content.error_translator")


def extract_upstream_message(body: Optional[str]) -> Optional[str]:
    """Pull a ``message`` string out of a JSON error body, if there is one."""
    if not body or not body.strip():
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str):
            return message
    return None


def read_body(response: httpx.Response) -> Optional[str]:
    """Best-effort body capture; never raises."""
    try:
        return response.text
    except Exception as exc:
        logger.debug("Could not read upstream error body", error=str(exc))
        return None


def _request_url(response: httpx.Response) -> Optional[str]:
    try:
        return str(response.request.url)
    except RuntimeError:
        return None


def translate_error(service: str, response: httpx.Response) -> UpstreamError:
    """Build the typed failure for a response with status >= 400."""
    status_code = response.status_code
    body = read_body(response)
    upstream_message = extract_upstream_message(body)

    logger.warning(
        "Upstream returned error status",
        service=service,
        status_code=status_code,
        url=_request_url(response),
        body=body,
    )

    error_cls = TransientTransportError if is_retryable_status(status_code) else UpstreamClientError
    return error_cls(
        service=service,
        upstream_status=status_code,
        response_body=body,
        upstream_message=upstream_message,
        message=f"Error calling {service}: {status_code} {response.reason_phrase}".rstrip(),
    )
