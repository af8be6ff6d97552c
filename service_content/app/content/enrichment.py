"""
Coordinate enrichment of unit records.
"""

import copy
from typing import Any, List, Mapping, Optional

from shared.logging import get_logger

from .models import Coordinates


logger = get_logger("content.enrichment")


def external_id_of(record: Any) -> Optional[str]:
    """``data.externalId`` as a string, accepting integer ids."""
    if not isinstance(record, dict):
        return None
    data = record.get("data")
    if not isinstance(data, dict):
        return None
    value = data.get("externalId")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return value
    return None


def _overlay(record: dict, coordinates: Coordinates) -> dict:
    enriched = copy.deepcopy(record)

    data = enriched.get("data")
    if not isinstance(data, dict):
        data = {}
        enriched["data"] = data

    address = data.get("address")
    if not isinstance(address, dict):
        address = {}
        data["address"] = address

    if coordinates.latitude is not None:
        address["latitude"] = coordinates.latitude
    if coordinates.longitude is not None:
        address["longitude"] = coordinates.longitude
    return enriched


def enrich_with_coordinates(records: List[Any], id_to_coordinates: Mapping[str, Coordinates]) -> List[Any]:
    """
    Overlay booking coordinates onto records that share an external id.

    Returns a new list of the same length and order; the input records are
    left untouched. Records without a mapped external id, and anything that
    is not a record, pass through as they are.
    """
    if not id_to_coordinates:
        return list(records)

    enriched: List[Any] = []
    for record in records:
        external_id = external_id_of(record)
        coordinates = id_to_coordinates.get(external_id) if external_id is not None else None
        if coordinates is None:
            enriched.append(record)
            continue

        try:
            enriched.append(_overlay(record, coordinates))
        except Exception as exc:
            logger.warning("Could not enrich record", external_id=external_id, error=str(exc))
            enriched.append(record)

    return enriched
