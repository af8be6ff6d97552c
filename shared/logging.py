"""
Shared logging configuration for the Content Aggregation Gateway.

Loggers are named ``<service>.<component>`` (``content.transport.cms``,
``content.cache``). Every event carries ``service`` and ``component`` split
from that name, plus ``upstream`` when the event concerns the CMS or booking
backend, and the request id of the HTTP request being served.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Context variable for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

# Components that only ever talk to one upstream
COMPONENT_UPSTREAMS = {
    "cms_client": "cms",
    "token_manager": "cms",
    "booking_client": "booking",
    "franchises": "booking",
}

REDACTED = "***"
SENSITIVE_KEYS = frozenset({"authorization", "access_token", "client_secret", "x-uno-public-token"})


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            redact_credentials,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def upstream_for(component: str) -> Optional[str]:
    """Upstream a component talks to: ``transport.cms`` -> ``cms``."""
    if component.startswith("transport."):
        return component.split(".", 1)[1] or None
    return COMPONENT_UPSTREAMS.get(component)


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service, component and upstream to log events.

    A ``service=`` keyword passed by the caller names an upstream and is
    reported as ``upstream``; ``service`` is always the logging service.
    """
    caller_service = event_dict.pop("service", None)
    if caller_service is not None:
        event_dict.setdefault("upstream", caller_service)

    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        service, component = logger_name.split(".", 1)
        event_dict["service"] = service
        event_dict["component"] = component
        upstream = upstream_for(component)
        if upstream is not None:
            event_dict.setdefault("upstream", upstream)

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add correlation context to log events."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    return event_dict


def redact_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask bearer tokens, client secrets and the booking public token."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Set request ID in context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    """Return the request ID bound to the current context, if any."""
    return request_id_var.get()


def clear_context():
    """Clear all context variables."""
    request_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
