"""
Chunked, concurrent resolution of unit records by external id.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from shared.logging import get_logger

from ..adapters.cms_client import quote_odata
from ..caching.read_through import CacheKey

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.cms_client import CmsClient
    from ..caching.read_through import ReadThroughCache


DEFAULT_CHUNK_SIZE = 50
CHUNK_TOP = 200


def distinct_ids(ids: Iterable[Any]) -> List[str]:
    """Drop blank ids and duplicates, keeping first-seen order."""
    seen: Dict[str, None] = {}
    for raw in ids or ():
        if raw is None:
            continue
        value = str(raw)
        if not value.strip():
            continue
        seen.setdefault(value, None)
    return list(seen)


def chunked(items: List[str], size: int) -> List[List[str]]:
    size = max(1, size)
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchResolver:
    """Resolves large external-id sets with one filtered query per chunk."""

    def __init__(
        self,
        cms_client: "CmsClient",
        cache: "ReadThroughCache",
        *,
        schema: str = "unidade",
        external_id_path: str = "data/externalId/iv",
        default_chunk_size: int = DEFAULT_CHUNK_SIZE,
        concurrency: int = 8,
    ):
        self.cms_client = cms_client
        self.cache = cache
        self.schema = schema
        self.external_id_path = external_id_path
        self.default_chunk_size = default_chunk_size
        self.logger = get_logger("content.batch_resolver")
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def resolve_by_ids(self, ids: Iterable[Any], chunk_size: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Return the records for ``ids``, concatenated in chunk order.

        Ids are sorted before chunking, so every permutation of one id set maps
        to the same chunks, cache keys and output order.
        """
        unique = sorted(distinct_ids(ids))
        if not unique:
            return []

        chunks = chunked(unique, chunk_size or self.default_chunk_size)
        self.logger.debug("Resolving ids", ids=len(unique), chunks=len(chunks))

        results = await asyncio.gather(*(self._resolve_chunk(chunk) for chunk in chunks))

        records: List[Dict[str, Any]] = []
        for chunk_records in results:
            records.extend(chunk_records)
        return records

    async def _resolve_chunk(self, chunk: List[str]) -> List[Dict[str, Any]]:
        ordered = sorted(chunk)
        key = CacheKey.build("units_by_external_ids", schema=self.schema, ids=ordered)
        # One record per id at most, so the page must hold the whole chunk
        top = max(CHUNK_TOP, len(ordered))

        async def fetch() -> List[Dict[str, Any]]:
            async with self._semaphore:
                odata = f"{self.external_id_path} in ({','.join(quote_odata(i) for i in ordered)})"
                envelope = await self.cms_client.filter(self.schema, odata, top=top)
                return envelope["items"]

        return await self.cache.get_or_compute(key, fetch)
