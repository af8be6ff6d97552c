"""
Franchise directory backed by the booking upstream.
"""

from typing import Any, TYPE_CHECKING

from shared.logging import get_logger

from ..caching.read_through import CacheKey
from .models import FranchiseIndex

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.booking_client import BookingClient
    from ..caching.read_through import ReadThroughCache


FRANCHISES_KEY = CacheKey.build("booking_franchises")
DEFAULT_FRANCHISES_TTL = 600


class FranchiseDirectory:
    """Cached view of the public franchise listing."""

    def __init__(
        self,
        booking_client: "BookingClient",
        cache: "ReadThroughCache",
        ttl_seconds: float = DEFAULT_FRANCHISES_TTL,
    ):
        self.booking_client = booking_client
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("content.franchises")

    async def get_raw(self) -> Any:
        """Franchise listing exactly as the booking upstream returned it."""
        return await self.cache.get_or_compute(
            FRANCHISES_KEY,
            self.booking_client.get_public_franchises,
            ttl=self.ttl_seconds,
        )

    async def get_index(self) -> FranchiseIndex:
        payload = await self.get_raw()
        index = FranchiseIndex.from_payload(payload, service=self.booking_client.transport.service_name)
        self.logger.debug("Franchise index loaded", franchises=len(index.allowed_ids))
        return index
