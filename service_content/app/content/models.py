"""
Value types returned by the content layer.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from shared.errors import UpstreamPayloadError


@dataclass
class PageResult:
    """One page of a listing plus the upstream total."""

    total: int
    page: int
    page_size: int
    items: List[Any] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total / self.page_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
            "items": self.items,
        }


@dataclass(frozen=True)
class Coordinates:
    latitude: Optional[float] = None
    longitude: Optional[float] = None


# external id -> coordinates
ExternalIdMap = Dict[str, Coordinates]


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass
class FranchiseIndex:
    """Franchise ids that may be listed, and where each one is."""

    allowed_ids: Set[str] = field(default_factory=set)
    coordinates: ExternalIdMap = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, service: str = "booking") -> "FranchiseIndex":
        """Build the index from ``{"franchises": [{"id": 1, "address": {...}}]}``."""
        if not isinstance(payload, dict) or not isinstance(payload.get("franchises"), list):
            raise UpstreamPayloadError(service=service, message="Franchise listing without 'franchises'")

        index = cls()
        for franchise in payload["franchises"]:
            if not isinstance(franchise, dict):
                continue
            franchise_id = franchise.get("id")
            if isinstance(franchise_id, bool) or not isinstance(franchise_id, (int, float)):
                continue
            if isinstance(franchise_id, float) and not franchise_id.is_integer():
                continue

            external_id = str(int(franchise_id))
            index.allowed_ids.add(external_id)

            address = franchise.get("address")
            if not isinstance(address, dict):
                address = {}
            index.coordinates[external_id] = Coordinates(
                latitude=_number(address.get("latitude")),
                longitude=_number(address.get("longitude")),
            )
        return index
