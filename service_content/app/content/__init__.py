"""
Content layer: query engine, batch resolution, enrichment and franchises.
"""

from .batch_resolver import BatchResolver
from .enrichment import enrich_with_coordinates
from .franchises import FranchiseDirectory
from .models import Coordinates, ExternalIdMap, FranchiseIndex, PageResult
from .query_engine import QueryEngine

__all__ = [
    "BatchResolver",
    "Coordinates",
    "ExternalIdMap",
    "FranchiseDirectory",
    "FranchiseIndex",
    "PageResult",
    "QueryEngine",
    "enrich_with_coordinates",
]
