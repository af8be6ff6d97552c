"""
Resilient HTTP transport shared by the upstream clients.

Each call is retried on timeouts, connection errors and retryable statuses
(408, 429, 5xx) with jittered exponential backoff. Failed responses never
leave this module: they are translated into ``shared.errors`` types.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator, Optional

import httpx

from shared.errors import TransientTransportError, UpstreamTimeout, is_retryable_status
from shared.logging import get_logger
from shared.retry import RetryConfig, calculate_delay

from .error_translator import translate_error

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


# Absolute time.monotonic() deadline for the current request, if any
request_deadline_var: ContextVar[Optional[float]] = ContextVar("request_deadline", default=None)


@contextmanager
def request_deadline(seconds: Optional[float]) -> Iterator[Optional[float]]:
    """Bind an overall deadline to every upstream call made inside the block."""
    if seconds is None:
        yield request_deadline_var.get()
        return

    deadline = time.monotonic() + seconds
    current = request_deadline_var.get()
    if current is not None:
        deadline = min(deadline, current)

    token = request_deadline_var.set(deadline)
    try:
        yield deadline
    finally:
        request_deadline_var.reset(token)


class ResilientTransport:
    """Retrying wrapper around an ``httpx.AsyncClient`` for one upstream."""

    def __init__(
        self,
        service_name: str,
        client: httpx.AsyncClient,
        retry_config: Optional[RetryConfig] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.service_name = service_name
        self.retry_config = retry_config or RetryConfig()
        self.metrics = metrics
        self.logger = get_logger(f"content.transport.{service_name}")
        self._client = client
        self._sleep = sleep

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def request(self, method: str, url: str, *, deadline: Optional[float] = None, **kwargs: Any) -> httpx.Response:
        """Build a request on the underlying client and send it."""
        request = self._client.build_request(method, url, **kwargs)
        return await self.send(request, deadline=deadline)

    async def send(self, request: httpx.Request, *, deadline: Optional[float] = None) -> httpx.Response:
        """
        Send ``request`` with retries and return a successful response.

        ``deadline`` is an absolute ``time.monotonic()`` value; when omitted the
        deadline bound by ``request_deadline`` applies. Raises
        ``UpstreamClientError`` / ``TransientTransportError`` for failed
        responses and ``UpstreamTimeout`` when time runs out.
        """
        if deadline is None:
            deadline = request_deadline_var.get()

        config = self.retry_config
        started = time.monotonic()
        attempt = 0
        last_error: Optional[Exception] = None

        try:
            while True:
                attempt += 1
                timeout = self._attempt_timeout(deadline, request)

                response: Optional[httpx.Response] = None
                reason: str
                try:
                    response = await asyncio.wait_for(self._client.send(request), timeout)
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    reason = "timeout"
                except httpx.TransportError as exc:
                    reason = f"connection error: {exc.__class__.__name__}"
                    last_error = exc

                if response is not None:
                    if not is_retryable_status(response.status_code):
                        if response.is_error:
                            self._record("client_error")
                            raise translate_error(self.service_name, response)
                        self._record("success")
                        if attempt > 1:
                            self.logger.info("Upstream call succeeded after retry", attempt=attempt, url=str(request.url))
                        return response
                    reason = f"status {response.status_code}"

                if attempt > config.max_retries:
                    self.logger.error(
                        "All retry attempts exhausted",
                        attempts=attempt,
                        url=str(request.url),
                        reason=reason,
                    )
                    if response is not None:
                        self._record("upstream_error")
                        raise translate_error(self.service_name, response)
                    if reason == "timeout":
                        self._record("timeout")
                        raise UpstreamTimeout(
                            self.service_name,
                            details={"url": str(request.url), "attempts": attempt},
                        )
                    self._record("connection_error")
                    raise TransientTransportError(
                        service=self.service_name,
                        message=f"Error calling {self.service_name}: {last_error}",
                    ) from last_error

                delay = calculate_delay(attempt, config)
                if deadline is not None and time.monotonic() + delay >= deadline:
                    self.logger.warning(
                        "No time left for another attempt",
                        attempts=attempt,
                        url=str(request.url),
                        reason=reason,
                    )
                    if response is not None:
                        self._record("upstream_error")
                        raise translate_error(self.service_name, response)
                    self._record("timeout")
                    raise UpstreamTimeout(
                        self.service_name,
                        message="Request deadline exceeded before next retry",
                        details={"url": str(request.url), "attempts": attempt},
                    )

                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt,
                    delay=round(delay, 3),
                    url=str(request.url),
                    reason=reason,
                )
                if self.metrics:
                    self.metrics.increment_counter("upstream_retries_total", service=self.service_name)
                await self._sleep(delay)
        except asyncio.CancelledError:
            self.logger.info("Upstream call cancelled by caller", url=str(request.url), attempt=attempt)
            raise
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "upstream_request_duration_seconds",
                    time.monotonic() - started,
                    service=self.service_name,
                )

    def _attempt_timeout(self, deadline: Optional[float], request: httpx.Request) -> float:
        """Per-attempt timeout clipped to whatever is left of the deadline."""
        timeout = self.retry_config.attempt_timeout
        if deadline is None:
            return timeout

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            self._record("timeout")
            raise UpstreamTimeout(
                self.service_name,
                message="Request deadline exceeded",
                details={"url": str(request.url)},
            )
        return min(timeout, remaining)

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(
                "upstream_requests_total",
                service=self.service_name,
                outcome=outcome,
            )
