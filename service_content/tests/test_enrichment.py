"""
Unit tests for coordinate enrichment.
"""

import copy

from service_content.app.content.enrichment import enrich_with_coordinates, external_id_of
from service_content.app.content.models import Coordinates
from shared.test_helpers import TestDataFactory


COORDS = {
    "10": Coordinates(latitude=-23.5, longitude=-46.6),
    "20": Coordinates(latitude=-22.9, longitude=None),
}


class TestExternalIdOf:
    """Test cases for external id extraction."""

    def test_string_and_integer_ids(self):
        assert external_id_of(TestDataFactory.unit("10")) == "10"
        assert external_id_of(TestDataFactory.unit(10)) == "10"

    def test_missing_or_odd_ids(self):
        assert external_id_of(TestDataFactory.unit(None)) is None
        assert external_id_of({"data": {"externalId": True}}) is None
        assert external_id_of({"data": "flat"}) is None
        assert external_id_of("not a record") is None


class TestEnrichWithCoordinates:
    """Test cases for enrich_with_coordinates."""

    def test_overlays_coordinates(self):
        """Test latitude and longitude are written into data.address."""
        records = [TestDataFactory.unit("10", address={"street": "Rua A"})]

        enriched = enrich_with_coordinates(records, COORDS)

        assert enriched[0]["data"]["address"] == {"street": "Rua A", "latitude": -23.5, "longitude": -46.6}

    def test_integer_external_id_matches(self):
        enriched = enrich_with_coordinates([TestDataFactory.unit(10)], COORDS)
        assert enriched[0]["data"]["address"]["latitude"] == -23.5

    def test_none_coordinates_are_not_written(self):
        """Test a missing longitude leaves any existing one in place."""
        records = [TestDataFactory.unit("20", address={"longitude": -43.1})]

        enriched = enrich_with_coordinates(records, COORDS)

        assert enriched[0]["data"]["address"] == {"longitude": -43.1, "latitude": -22.9}

    def test_creates_or_replaces_address(self):
        """Test a missing or non-object address becomes an object."""
        missing = TestDataFactory.unit("10")
        scalar = TestDataFactory.unit("10", address="Rua A, 100")

        enriched = enrich_with_coordinates([missing, scalar], COORDS)

        for record in enriched:
            assert record["data"]["address"] == {"latitude": -23.5, "longitude": -46.6}

    def test_input_is_not_mutated(self):
        """Test the input list and its records are left untouched."""
        records = [TestDataFactory.unit("10"), TestDataFactory.unit("99")]
        snapshot = copy.deepcopy(records)

        enriched = enrich_with_coordinates(records, COORDS)

        assert records == snapshot
        assert enriched is not records
        assert enriched[0] is not records[0]

    def test_unmatched_and_unstructured_records_pass_through(self):
        """Test records without a mapped id come back unchanged, in order."""
        records = [
            TestDataFactory.unit("99"),
            TestDataFactory.unit(None),
            "raw string",
            42,
            TestDataFactory.unit("10"),
        ]

        enriched = enrich_with_coordinates(records, COORDS)

        assert len(enriched) == len(records)
        assert enriched[:4] == records[:4]
        assert "address" in enriched[4]["data"]

    def test_idempotent(self):
        """Test enriching twice equals enriching once."""
        records = [TestDataFactory.unit("10"), TestDataFactory.unit("20"), TestDataFactory.unit("30")]

        once = enrich_with_coordinates(records, COORDS)
        twice = enrich_with_coordinates(once, COORDS)

        assert twice == once

    def test_empty_map_returns_copy_of_list(self):
        records = [TestDataFactory.unit("10")]

        enriched = enrich_with_coordinates(records, {})

        assert enriched == records
        assert enriched is not records
