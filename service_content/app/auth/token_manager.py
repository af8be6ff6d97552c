"""
Client-credentials token management for the CMS upstream.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from shared.errors import UpstreamPayloadError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..adapters.transport import ResilientTransport


TOKEN_PATH = "/identity-server/connect/token"


@dataclass
class AuthToken:
    """Bearer credential with the moment it was obtained."""

    value: str
    obtained_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now < self.obtained_at + self.ttl


class TokenManager:
    """Caches the CMS bearer token and refreshes it at most once at a time."""

    def __init__(
        self,
        transport: "ResilientTransport",
        client_id: str,
        client_secret: str,
        *,
        scope: str = "squidex-api",
        ttl_seconds: float = 3600,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("content.token_manager")
        self._clock = clock
        self._token: Optional[AuthToken] = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a valid bearer token, exchanging credentials when needed."""
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token.value

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if token is not None and token.is_valid(self._clock()):
                return token.value

            self._token = await self._exchange()
            return self._token.value

    async def authorization_header(self) -> str:
        return f"Bearer {await self.get_token()}"

    async def _exchange(self) -> AuthToken:
        self.logger.info("Requesting CMS access token", client_id=self.client_id, scope=self.scope)
        try:
            response = await self.transport.request(
                "POST",
                TOKEN_PATH,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": self.scope,
                },
            )
        except Exception:
            self._record("error")
            raise

        try:
            payload = response.json()
        except ValueError:
            payload = None

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            self._record("error")
            raise UpstreamPayloadError(
                service=self.transport.service_name,
                upstream_status=response.status_code,
                response_body=response.text,
                message="Token response did not contain an access_token",
            )

        self._record("success")
        self.logger.info("CMS access token refreshed", ttl_seconds=self.ttl_seconds)
        return AuthToken(value=access_token, obtained_at=self._clock(), ttl=self.ttl_seconds)

    def _record(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("token_exchanges_total", status=status)
