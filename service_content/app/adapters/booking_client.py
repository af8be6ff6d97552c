"""
Booking/CRM public API client.
"""

from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from shared.logging import get_logger

from .cms_client import decode_json

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .transport import ResilientTransport


PUBLIC_TOKEN_HEADER = "x-uno-public-token"


class BookingClient:
    """Client for the booking upstream's public endpoints."""

    def __init__(self, transport: "ResilientTransport", franchise_identifier: int = 2):
        self.transport = transport
        self.franchise_identifier = franchise_identifier
        self.logger = get_logger("content.booking_client")

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self.transport.request(method, path, **kwargs)
        return decode_json(self.transport.service_name, response)

    async def get_public_franchises(self) -> Any:
        """Raw franchise listing: ``{"franchises": [...]}``."""
        return await self._call("GET", "franchises")

    async def create_lead(self, payload: Dict[str, Any]) -> Any:
        self.logger.info("Creating lead", franchise_id=payload.get("franchiseId"))
        return await self._call("POST", "lead", json=payload)

    async def get_schedule_hours(
        self,
        franchise_id: int,
        date: str,
        extra_query: Optional[Mapping[str, Optional[str]]] = None,
    ) -> Any:
        """Available hours for ``date`` (``dd/MM/yyyy``) at one franchise."""
        params: Dict[str, Any] = {
            "date": date,
            "franchiseIdentifier": str(self.franchise_identifier),
        }
        for name, value in (extra_query or {}).items():
            if value is not None and str(value).strip():
                params[name] = value
        return await self._call("GET", f"budget-schedule/{franchise_id}/hours", params=params)

    async def create_schedule(self, franchise_id: int, payload: Dict[str, Any]) -> Any:
        self.logger.info("Creating schedule", franchise_id=franchise_id)
        return await self._call("POST", f"budget-schedule/{franchise_id}/create", json=payload)
