"""
Content aggregation service.

Fronts the CMS and booking upstreams with a cached, retrying query layer and
exposes it over HTTP.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import httpx
from fastapi import Body, Query, Request, Response

from shared.base_service import BaseService
from shared.errors import GatewayException, ValidationError
from shared.retry import RetryConfig

from .adapters.booking_client import PUBLIC_TOKEN_HEADER, BookingClient
from .adapters.cms_client import CmsClient
from .adapters.transport import ResilientTransport, request_deadline
from .auth.token_manager import TokenManager
from .caching.read_through import ReadThroughCache
from .content.batch_resolver import BatchResolver
from .content.franchises import FranchiseDirectory
from .content.models import PageResult
from .content.query_engine import QueryEngine
from .domain.requests import PublicLeadRequest, ResolveReferencesRequest, ScheduleCreateRequest


class NotFound(GatewayException):
    """Requested content does not exist upstream."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("not_found", message, details, status_code=404)


class ContentService(BaseService):
    """Content aggregation service implementation."""

    def __init__(
        self,
        cms_http: Optional[httpx.AsyncClient] = None,
        booking_http: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__("content", 8000)
        config = self.config

        retry_config = RetryConfig(
            max_retries=config.upstream_max_retries,
            attempt_timeout=config.upstream_attempt_timeout,
        )

        if cms_http is None:
            cms_http = httpx.AsyncClient(base_url=config.cms_base_url, timeout=config.cms_request_timeout)
        if booking_http is None:
            booking_headers = {}
            if config.booking_public_token:
                booking_headers[PUBLIC_TOKEN_HEADER] = config.booking_public_token
            booking_http = httpx.AsyncClient(
                base_url=config.booking_base_url,
                timeout=config.booking_request_timeout,
                headers=booking_headers,
            )

        self.cms_transport = ResilientTransport("cms", cms_http, retry_config, metrics=self.metrics)
        self.booking_transport = ResilientTransport("booking", booking_http, retry_config, metrics=self.metrics)

        self.token_manager = TokenManager(
            self.cms_transport,
            config.cms_client_id,
            config.cms_client_secret,
            scope=config.cms_scope,
            ttl_seconds=config.cms_token_ttl_seconds,
            metrics=self.metrics,
        )
        self.cache = ReadThroughCache(config.content_cache_ttl_seconds, metrics=self.metrics)

        self.cms_client = CmsClient(self.cms_transport, self.token_manager, config.cms_app_name)
        self.booking_client = BookingClient(self.booking_transport, config.booking_franchise_identifier)

        self.batch_resolver = BatchResolver(
            self.cms_client,
            self.cache,
            schema=config.units_schema,
            external_id_path=config.external_id_path,
            default_chunk_size=config.batch_chunk_size,
            concurrency=config.fanout_concurrency,
        )
        self.query_engine = QueryEngine(
            self.cms_client,
            self.cache,
            self.batch_resolver,
            units_schema=config.units_schema,
            blog_schema=config.blog_schema,
            external_id_path=config.external_id_path,
            slug_path=config.slug_path,
            full_listing_page_size=config.full_listing_page_size,
            concurrency=config.fanout_concurrency,
        )
        self.franchise_directory = FranchiseDirectory(
            self.booking_client,
            self.cache,
            ttl_seconds=config.franchises_cache_ttl_seconds,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.cms_transport.close()
            await self.booking_transport.close()

        self._setup_content_routes()
        self._setup_booking_routes()

        self.app.state.content_service = self

    @contextmanager
    def _deadline(self) -> Iterator[Optional[float]]:
        with request_deadline(self.config.request_deadline_seconds) as deadline:
            yield deadline

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "cms": "configured" if self.config.cms_client_id else "missing_credentials",
            "booking": "configured" if self.config.booking_public_token else "missing_token",
            "cache": f"{len(self.cache)} entries",
        }

    def _setup_content_routes(self):
        """Set up CMS content routes."""

        @self.app.get("/api/cms/units")
        async def list_units(
            page: Optional[int] = Query(None),
            page_size: Optional[int] = Query(None, alias="pageSize"),
            only_with_franchise: bool = Query(False, alias="onlyWithFranchise"),
            search: Optional[str] = Query(None),
        ):
            """List units, optionally limited to those with a booking franchise."""
            with self._deadline():
                allowed_ids = None
                coordinates = None
                if only_with_franchise:
                    index = await self.franchise_directory.get_index()
                    allowed_ids = index.allowed_ids
                    coordinates = index.coordinates

                result = await self.query_engine.list_units(
                    page=page,
                    page_size=page_size,
                    allowed_ids=allowed_ids,
                    coordinates=coordinates,
                    search=search,
                )
            return result.to_dict() if isinstance(result, PageResult) else result

        @self.app.get("/api/cms/units/by-external-id/{external_id}")
        async def get_unit_by_external_id(external_id: str):
            with self._deadline():
                unit = await self.query_engine.get_by_external_id(external_id)
            if unit is None:
                raise NotFound("Unit not found", details={"external_id": external_id})
            return unit

        @self.app.get("/api/cms/blog/posts")
        async def list_blog_posts(
            page: int = Query(1),
            page_size: int = Query(10, alias="pageSize"),
            search: Optional[str] = Query(None),
        ):
            with self._deadline():
                result = await self.query_engine.get_blog_posts(page=page, page_size=page_size, search=search)
            return result.to_dict()

        @self.app.get("/api/cms/blog/posts/{slug}")
        async def get_blog_post(slug: str):
            with self._deadline():
                post = await self.query_engine.get_blog_post_by_slug(slug)
            if post is None:
                raise NotFound("Blog post not found", details={"slug": slug})
            return post

        @self.app.post("/api/cms/cache/clear", status_code=204)
        async def clear_cache():
            """Drop every cached upstream response."""
            dropped = self.query_engine.clear_cache()
            self.logger.info("Cache cleared on request", dropped=dropped)
            return Response(status_code=204)

        @self.app.get("/api/cms/cache/stats")
        async def cache_stats():
            return self.cache.stats()

        @self.app.get("/api/cms/{schema}")
        async def get_latest(schema: str):
            """Latest document of ``schema``; an empty object when there is none."""
            with self._deadline():
                data = await self.query_engine.get_latest(schema)
            return data if data is not None else {}

        async def _resolve(schema: str, body: Optional[ResolveReferencesRequest], data_only: bool):
            if body is None or not body.ids:
                return []
            with self._deadline():
                return await self.query_engine.get_by_ids(
                    schema,
                    body.ids,
                    resolve_asset_urls=body.resolve_asset_urls,
                    flatten=body.flatten,
                    data_only=data_only,
                )

        @self.app.post("/api/cms/{schema}/resolve")
        async def resolve_references(
            schema: str,
            body: Optional[ResolveReferencesRequest] = Body(None),
            data_only: bool = Query(False, alias="dataOnly"),
        ):
            """Resolve content references by id."""
            return await _resolve(schema, body, data_only)

        @self.app.post("/api/cms/{schema}/resolve/data")
        async def resolve_reference_data(
            schema: str,
            body: Optional[ResolveReferencesRequest] = Body(None),
        ):
            return await _resolve(schema, body, True)

    def _setup_booking_routes(self):
        """Set up booking pass-through routes."""

        @self.app.get("/api/franchises")
        async def list_franchises():
            with self._deadline():
                return await self.franchise_directory.get_raw()

        @self.app.get("/api/franchises/{franchise_id}/schedule/hours")
        async def get_schedule_hours(
            request: Request,
            franchise_id: int,
            date: str = Query(..., min_length=1, description="dd/MM/yyyy"),
        ):
            if not date.strip():
                raise ValidationError("Query parameter 'date' is required (dd/MM/yyyy)")
            extra = {
                name: value
                for name, value in request.query_params.items()
                if name.lower() != "date"
            }
            with self._deadline():
                return await self.booking_client.get_schedule_hours(franchise_id, date, extra)

        @self.app.post("/api/franchises/{franchise_id}/schedule")
        async def create_schedule(franchise_id: int, body: ScheduleCreateRequest):
            payload = body.to_upstream(self.config.booking_franchise_identifier)
            with self._deadline():
                return await self.booking_client.create_schedule(franchise_id, payload)

        @self.app.post("/api/leads")
        async def create_lead(body: PublicLeadRequest):
            with self._deadline():
                return await self.booking_client.create_lead(body.to_upstream())


def create_app():
    """Create FastAPI application."""
    service = ContentService()
    return service.app


if __name__ == "__main__":
    service = ContentService()
    service.run()
