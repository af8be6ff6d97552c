"""
CMS content API client.

Builds the content API requests (latest listing, id query, structured ``q``
query, OData filter and plain paging) and attaches the bearer token and the
flatten/resolve headers. Every call goes through the CMS resilient transport.
"""

import json
from typing import Any, Dict, List, TYPE_CHECKING

import httpx

from shared.errors import UpstreamPayloadError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..auth.token_manager import TokenManager
    from .transport import ResilientTransport


def decode_json(service: str, response: httpx.Response) -> Any:
    """Decode a successful response body, treating garbage as a payload error."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise UpstreamPayloadError(
            service=service,
            upstream_status=response.status_code,
            response_body=response.text,
            message=f"Invalid JSON from {service}",
        ) from exc


def quote_odata(value: str) -> str:
    """Render ``value`` as an OData string literal."""
    return "'" + value.replace("'", "''") + "'"


class CmsClient:
    """Client for the CMS content API of one app."""

    def __init__(self, transport: "ResilientTransport", token_manager: "TokenManager", app_name: str):
        self.transport = transport
        self.token_manager = token_manager
        self.app_name = app_name
        self.logger = get_logger("content.cms_client")

    def _path(self, schema: str, suffix: str = "") -> str:
        return f"/api/content/{self.app_name}/{schema}{suffix}"

    async def _headers(self, *, flatten: bool = True, resolve_asset_urls: bool = True) -> Dict[str, str]:
        headers = {"Authorization": await self.token_manager.authorization_header()}
        if flatten:
            headers["X-Flatten"] = "true"
        if resolve_asset_urls:
            headers["X-Resolve-Urls"] = "*"
        return headers

    async def _get(self, schema: str, params: Dict[str, Any], **header_flags: bool) -> Dict[str, Any]:
        headers = await self._headers(**header_flags)
        response = await self.transport.request("GET", self._path(schema), params=params, headers=headers)
        return self._envelope(response)

    def _envelope(self, response: httpx.Response) -> Dict[str, Any]:
        payload = decode_json(self.transport.service_name, response)
        if payload is None:
            return {"total": 0, "items": []}
        if not isinstance(payload, dict):
            raise UpstreamPayloadError(
                service=self.transport.service_name,
                upstream_status=response.status_code,
                response_body=response.text,
                message="Unexpected content envelope",
            )
        if not isinstance(payload.get("items"), list):
            payload["items"] = []
        return payload

    async def list_latest(self, schema: str, top: int = 1) -> Dict[str, Any]:
        """Most recently modified items of ``schema``."""
        return await self._get(schema, {"$top": top, "$orderby": "lastModified desc"})

    async def query_by_ids(
        self,
        schema: str,
        ids: List[str],
        *,
        flatten: bool = True,
        resolve_asset_urls: bool = True,
    ) -> Dict[str, Any]:
        """Fetch items by content id."""
        headers = await self._headers(flatten=flatten, resolve_asset_urls=resolve_asset_urls)
        response = await self.transport.request(
            "POST",
            self._path(schema, "/query"),
            json={"ids": list(ids), "take": len(ids)},
            headers=headers,
        )
        return self._envelope(response)

    async def query(self, schema: str, query: Dict[str, Any], *, resolve_asset_urls: bool = True) -> Dict[str, Any]:
        """Run a structured ``q`` query (full text, filter, sort, skip/take)."""
        params = {"q": json.dumps(query, separators=(",", ":"))}
        return await self._get(schema, params, resolve_asset_urls=resolve_asset_urls)

    async def filter(self, schema: str, odata_filter: str, top: int) -> Dict[str, Any]:
        """Run an OData ``$filter`` query."""
        return await self._get(schema, {"$filter": odata_filter, "$top": top}, resolve_asset_urls=False)

    async def list_page(self, schema: str, skip: int, top: int) -> Dict[str, Any]:
        """Plain skip/top page in upstream default order."""
        return await self._get(schema, {"$top": top, "$skip": skip}, resolve_asset_urls=False)
