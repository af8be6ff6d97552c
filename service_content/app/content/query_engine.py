"""
Query engine over the CMS content API.

Every query shape is keyed and cached independently in the read-through
cache. Cached values are always the raw upstream data; enrichment is applied
to the copy handed back by the cache.
"""

import asyncio
import math
from typing import Any, Awaitable, Dict, Iterable, List, Optional, Set, TYPE_CHECKING, Union

from shared.errors import UpstreamClientError, ValidationError
from shared.logging import get_logger

from ..adapters.cms_client import quote_odata
from ..caching.read_through import CacheKey
from .batch_resolver import distinct_ids
from .enrichment import enrich_with_coordinates
from .models import ExternalIdMap, PageResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.cms_client import CmsClient
    from ..caching.read_through import ReadThroughCache
    from .batch_resolver import BatchResolver


SEARCH_DEFAULT_PAGE = 1
SEARCH_DEFAULT_PAGE_SIZE = 10
LAST_MODIFIED_DESC = [{"path": "lastModified", "order": "descending"}]


def _data_of(item: Any) -> Dict[str, Any]:
    if isinstance(item, dict) and isinstance(item.get("data"), dict):
        return item["data"]
    return {}


def _total_of(envelope: Dict[str, Any]) -> int:
    total = envelope.get("total")
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        return len(envelope.get("items", []))
    return int(total)


def _paginate(items: List[Any], page: int, page_size: int) -> PageResult:
    skip = (page - 1) * page_size
    return PageResult(total=len(items), page=page, page_size=page_size, items=items[skip:skip + page_size])


class QueryEngine:
    """Latest-one, by-id-set, paged/searchable listing and blog queries."""

    def __init__(
        self,
        cms_client: "CmsClient",
        cache: "ReadThroughCache",
        batch_resolver: "BatchResolver",
        *,
        units_schema: str = "unidade",
        blog_schema: str = "blog",
        external_id_path: str = "data/externalId/iv",
        slug_path: str = "data/slug/iv",
        full_listing_page_size: int = 200,
        concurrency: int = 8,
    ):
        self.cms_client = cms_client
        self.cache = cache
        self.batch_resolver = batch_resolver
        self.units_schema = units_schema
        self.blog_schema = blog_schema
        self.external_id_path = external_id_path
        self.slug_path = slug_path
        self.full_listing_page_size = full_listing_page_size
        self.logger = get_logger("content.query_engine")
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _not_found_as(self, default: Any, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except UpstreamClientError as exc:
            if exc.upstream_status == 404:
                self.logger.info("Upstream reported not found", service=exc.service)
                return default
            raise

    # Latest-one

    async def get_latest(self, schema: str) -> Optional[Dict[str, Any]]:
        """``data`` of the most recently modified item of ``schema``, or None."""
        key = CacheKey.build("latest", schema=schema)

        async def fetch() -> Optional[Dict[str, Any]]:
            envelope = await self.cms_client.list_latest(schema, top=1)
            items = envelope["items"]
            if not items or not isinstance(items[0], dict) or "data" not in items[0]:
                return None
            return items[0]["data"]

        return await self._not_found_as(None, self.cache.get_or_compute(key, fetch))

    # By-id-set

    async def get_by_ids(
        self,
        schema: str,
        ids: Iterable[Any],
        resolve_asset_urls: bool = True,
        flatten: bool = True,
        data_only: bool = False,
    ) -> List[Dict[str, Any]]:
        """Items with the given content ids; ``data_only`` projects each to its ``data``."""
        unique = distinct_ids(ids)
        if not unique:
            return []

        key = CacheKey.build(
            "by_ids",
            schema=schema,
            ids=unique,
            flatten=flatten,
            resolve_asset_urls=resolve_asset_urls,
        )

        async def fetch() -> List[Dict[str, Any]]:
            envelope = await self.cms_client.query_by_ids(
                schema,
                unique,
                flatten=flatten,
                resolve_asset_urls=resolve_asset_urls,
            )
            return envelope["items"]

        items = await self._not_found_as([], self.cache.get_or_compute(key, fetch))
        if data_only:
            return [_data_of(item) for item in items]
        return items

    # Units

    async def get_by_external_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        """First unit whose external id equals ``external_id``, or None."""
        key = CacheKey.build("unit_by_external_id", schema=self.units_schema, external_id=external_id)

        async def fetch() -> Optional[Dict[str, Any]]:
            odata = f"{self.external_id_path} eq {quote_odata(external_id)}"
            envelope = await self.cms_client.filter(self.units_schema, odata, top=1)
            items = envelope["items"]
            return items[0] if items else None

        return await self._not_found_as(None, self.cache.get_or_compute(key, fetch))

    async def list_units(
        self,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        allowed_ids: Optional[Set[str]] = None,
        coordinates: Optional[ExternalIdMap] = None,
        search: Optional[str] = None,
    ) -> Union[PageResult, List[Dict[str, Any]]]:
        """
        Paged, searchable listing of units.

        ``page`` and ``page_size`` go together. A search is always paginated
        upstream; an allow-list without search is resolved in full and paged in
        memory; otherwise one upstream page, or every page when no page is
        given. Items are enriched with ``coordinates`` when provided.
        """
        if (page is None) != (page_size is None):
            raise ValidationError(
                "page and pageSize must be provided together, or neither",
                details={"page": page, "pageSize": page_size},
            )
        if page is not None and (page <= 0 or page_size <= 0):
            raise ValidationError(
                "page and pageSize must be greater than zero",
                details={"page": page, "pageSize": page_size},
            )

        if search is not None and search.strip():
            result = await self._search_units(
                page or SEARCH_DEFAULT_PAGE,
                page_size or SEARCH_DEFAULT_PAGE_SIZE,
                search,
                allowed_ids,
            )
        elif allowed_ids is not None:
            resolved = await self.batch_resolver.resolve_by_ids(allowed_ids) if allowed_ids else []
            result = _paginate(resolved, page, page_size) if page is not None else resolved
        elif page is not None:
            result = await self._units_page(page, page_size)
        else:
            result = await self._all_units()

        if coordinates:
            if isinstance(result, PageResult):
                result.items = enrich_with_coordinates(result.items, coordinates)
            else:
                result = enrich_with_coordinates(result, coordinates)
        return result

    async def _search_units(
        self,
        page: int,
        page_size: int,
        search: str,
        allowed_ids: Optional[Set[str]],
    ) -> PageResult:
        if allowed_ids is not None and not allowed_ids:
            return PageResult(total=0, page=page, page_size=page_size)

        skip = (page - 1) * page_size
        ordered_ids = sorted(allowed_ids) if allowed_ids else None
        key = CacheKey.build(
            "units_search",
            schema=self.units_schema,
            skip=skip,
            take=page_size,
            search=search,
            ids=ordered_ids,
        )

        async def fetch() -> Dict[str, Any]:
            filters: List[Dict[str, Any]] = []
            if ordered_ids:
                filters.append({"path": self.external_id_path, "op": "in", "value": ordered_ids})
            query = {
                "fullText": search,
                "take": page_size,
                "skip": skip,
                "sort": LAST_MODIFIED_DESC,
                "filter": {"and": filters},
            }
            return await self.cms_client.query(self.units_schema, query)

        envelope = await self.cache.get_or_compute(key, fetch)
        return PageResult(total=_total_of(envelope), page=page, page_size=page_size, items=envelope["items"])

    async def _fetch_page(self, skip: int, top: int) -> Dict[str, Any]:
        key = CacheKey.build("units_page", schema=self.units_schema, skip=skip, top=top)

        async def fetch() -> Dict[str, Any]:
            async with self._semaphore:
                return await self.cms_client.list_page(self.units_schema, skip=skip, top=top)

        return await self.cache.get_or_compute(key, fetch)

    async def _units_page(self, page: int, page_size: int) -> PageResult:
        envelope = await self._fetch_page((page - 1) * page_size, page_size)
        return PageResult(total=_total_of(envelope), page=page, page_size=page_size, items=envelope["items"])

    async def _all_units(self) -> List[Dict[str, Any]]:
        top = self.full_listing_page_size
        first = await self._fetch_page(0, top)
        items: List[Dict[str, Any]] = list(first["items"])

        total_pages = math.ceil(_total_of(first) / top)
        if total_pages > 1:
            self.logger.debug("Fetching remaining unit pages", pages=total_pages - 1, page_size=top)
            pages = await asyncio.gather(*(self._fetch_page(p * top, top) for p in range(1, total_pages)))
            for envelope in pages:
                items.extend(envelope["items"])
        return items

    # Blog

    async def get_blog_posts(self, page: int = 1, page_size: int = 10, search: Optional[str] = None) -> PageResult:
        """Blog posts, newest first, projected to their ``data``."""
        if page <= 0 or page_size <= 0:
            raise ValidationError(
                "page and pageSize must be greater than zero",
                details={"page": page, "pageSize": page_size},
            )

        full_text = search if search is not None and search.strip() else None
        skip = (page - 1) * page_size
        key = CacheKey.build("blog_posts", schema=self.blog_schema, skip=skip, take=page_size, search=full_text)

        async def fetch() -> Dict[str, Any]:
            query: Dict[str, Any] = {
                "take": page_size,
                "skip": skip,
                "sort": LAST_MODIFIED_DESC,
                "filter": {"and": []},
            }
            if full_text is not None:
                query["fullText"] = full_text
            return await self.cms_client.query(self.blog_schema, query, resolve_asset_urls=False)

        envelope = await self.cache.get_or_compute(key, fetch)
        posts = [item["data"] for item in envelope["items"] if isinstance(item, dict) and "data" in item]
        return PageResult(total=_total_of(envelope), page=page, page_size=page_size, items=posts)

    async def get_blog_post_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        """``data`` of the blog post with ``slug``, or None."""
        key = CacheKey.build("blog_post_by_slug", schema=self.blog_schema, slug=slug)

        async def fetch() -> Optional[Dict[str, Any]]:
            odata = f"{self.slug_path} eq {quote_odata(slug)}"
            envelope = await self.cms_client.filter(self.blog_schema, odata, top=1)
            items = envelope["items"]
            if not items or not isinstance(items[0], dict) or "data" not in items[0]:
                return None
            return items[0]["data"]

        return await self._not_found_as(None, self.cache.get_or_compute(key, fetch))

    def clear_cache(self) -> int:
        return self.cache.clear()
