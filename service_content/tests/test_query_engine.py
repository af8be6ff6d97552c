"""
Unit tests for the query engine, run against a recorded CMS.
"""

import json
import re

import pytest

from service_content.app.adapters.cms_client import CmsClient
from service_content.app.adapters.transport import ResilientTransport
from service_content.app.auth.token_manager import TOKEN_PATH, TokenManager
from service_content.app.caching.read_through import ReadThroughCache
from service_content.app.content.batch_resolver import BatchResolver
from service_content.app.content.models import Coordinates, PageResult
from service_content.app.content.query_engine import LAST_MODIFIED_DESC, QueryEngine
from shared.errors import TransientTransportError, ValidationError
from shared.retry import RetryConfig
from shared.test_helpers import (
    RecordingTransport,
    TestDataFactory,
    json_response,
    no_sleep,
    q_param,
    query_params,
)


CONTENT = "/api/content/site/"


def make_engine(content_handler):
    """Full CMS stack over a recording transport; token requests are answered here."""

    def handle(request):
        if request.url.path == TOKEN_PATH:
            return json_response(200, TestDataFactory.token())
        return content_handler(request)

    recorder = RecordingTransport(handle)
    transport = ResilientTransport("cms", recorder.client(), RetryConfig(max_retries=0), sleep=no_sleep)
    token_manager = TokenManager(transport, "client-id", "client-secret")
    cms_client = CmsClient(transport, token_manager, "site")
    cache = ReadThroughCache()
    resolver = BatchResolver(cms_client, cache, schema="unidade")
    engine = QueryEngine(cms_client, cache, resolver, units_schema="unidade", blog_schema="blog")
    return engine, recorder


def content_calls(recorder):
    return recorder.calls_to(CONTENT)


def units_from_filter(request):
    """Answer an OData ``in`` filter with one unit per quoted id."""
    odata = query_params(request)["$filter"]
    ids = re.findall(r"'([^']*)'", odata.split(" in ", 1)[1])
    return json_response(200, TestDataFactory.envelope(TestDataFactory.unit(i) for i in ids))


class TestLatest:
    """Test cases for get_latest."""

    @pytest.mark.asyncio
    async def test_returns_data_of_newest_item_and_caches(self):
        """Test the newest item's data is returned and the second read is cached."""
        engine, recorder = make_engine(
            lambda request: json_response(200, TestDataFactory.envelope([{"data": {"title": "Home"}}]))
        )

        assert await engine.get_latest("home") == {"title": "Home"}
        assert await engine.get_latest("home") == {"title": "Home"}

        calls = content_calls(recorder)
        assert len(calls) == 1
        request = calls[0]
        assert request.url.path == "/api/content/site/home"
        assert query_params(request) == {"$top": "1", "$orderby": "lastModified desc"}
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.headers["X-Flatten"] == "true"
        assert request.headers["X-Resolve-Urls"] == "*"

    @pytest.mark.asyncio
    async def test_empty_schema_returns_none(self):
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        assert await engine.get_latest("home") is None
        assert await engine.get_latest("home") is None
        assert len(content_calls(recorder)) == 2

    @pytest.mark.asyncio
    async def test_upstream_not_found_returns_none(self):
        engine, _ = make_engine(lambda request: json_response(404, {"message": "Schema not found"}))

        assert await engine.get_latest("missing") is None

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self):
        engine, _ = make_engine(lambda request: json_response(500, {"message": "boom"}))

        with pytest.raises(TransientTransportError) as exc_info:
            await engine.get_latest("home")

        assert exc_info.value.status_code == 502
        assert exc_info.value.message == "boom"


class TestByIds:
    """Test cases for get_by_ids."""

    @staticmethod
    def echo_ids(request):
        body = json.loads(request.content)
        items = [{"id": i, "data": {"title": f"Title {i}"}} for i in body["ids"]]
        return json_response(200, TestDataFactory.envelope(items))

    @pytest.mark.asyncio
    async def test_empty_ids_make_no_calls(self):
        engine, recorder = make_engine(self.echo_ids)

        assert await engine.get_by_ids("blog", []) == []
        assert await engine.get_by_ids("blog", ["", None]) == []
        assert recorder.call_count == 0

    @pytest.mark.asyncio
    async def test_posts_distinct_ids(self):
        """Test duplicate ids are sent once, in first-seen order."""
        engine, recorder = make_engine(self.echo_ids)

        items = await engine.get_by_ids("blog", ["b", "a", "b"])

        request = content_calls(recorder)[0]
        assert request.method == "POST"
        assert request.url.path == "/api/content/site/blog/query"
        assert json.loads(request.content) == {"ids": ["b", "a"], "take": 2}
        assert [item["id"] for item in items] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_data_only_projection_shares_the_cache(self):
        """Test the projected and raw forms come from one upstream call."""
        engine, recorder = make_engine(self.echo_ids)

        data = await engine.get_by_ids("blog", ["a"], data_only=True)
        raw = await engine.get_by_ids("blog", ["a"])

        assert data == [{"title": "Title a"}]
        assert raw == [{"id": "a", "data": {"title": "Title a"}}]
        assert len(content_calls(recorder)) == 1

    @pytest.mark.asyncio
    async def test_flags_control_headers_and_key(self):
        engine, recorder = make_engine(self.echo_ids)

        await engine.get_by_ids("blog", ["a"], resolve_asset_urls=False, flatten=False)
        await engine.get_by_ids("blog", ["a"])

        first, second = content_calls(recorder)
        assert "X-Flatten" not in first.headers
        assert "X-Resolve-Urls" not in first.headers
        assert second.headers["X-Flatten"] == "true"
        assert second.headers["X-Resolve-Urls"] == "*"

    @pytest.mark.asyncio
    async def test_upstream_not_found_returns_empty_list(self):
        engine, _ = make_engine(lambda request: json_response(404))

        assert await engine.get_by_ids("blog", ["a"]) == []


class TestListUnits:
    """Test cases for list_units."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,page_size", [(1, None), (None, 10), (0, 10), (1, 0), (-1, 5)])
    async def test_invalid_paging_is_rejected_before_any_call(self, page, page_size):
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        with pytest.raises(ValidationError):
            await engine.list_units(page=page, page_size=page_size)

        assert recorder.call_count == 0

    @pytest.mark.asyncio
    async def test_search_is_paginated_upstream(self):
        """Test a search sends a structured query and reports total pages."""
        items = [TestDataFactory.unit(str(n)) for n in range(10)]
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope(items, total=25)))

        result = await engine.list_units(page=2, page_size=10, search="centro")

        assert isinstance(result, PageResult)
        assert result.total == 25
        assert result.total_pages == 3
        assert len(result.items) == 10

        request = content_calls(recorder)[0]
        assert q_param(request) == {
            "fullText": "centro",
            "take": 10,
            "skip": 10,
            "sort": LAST_MODIFIED_DESC,
            "filter": {"and": []},
        }
        assert request.headers["X-Resolve-Urls"] == "*"

    @pytest.mark.asyncio
    async def test_search_defaults_to_first_page_of_ten(self):
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        result = await engine.list_units(search="centro")

        assert (result.page, result.page_size) == (1, 10)
        query = q_param(content_calls(recorder)[0])
        assert (query["skip"], query["take"]) == (0, 10)

    @pytest.mark.asyncio
    async def test_search_with_allow_list_filters_upstream(self):
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        await engine.list_units(search="centro", allowed_ids={"20", "10"})

        query = q_param(content_calls(recorder)[0])
        assert query["filter"] == {"and": [{"path": "data/externalId/iv", "op": "in", "value": ["10", "20"]}]}

    @pytest.mark.asyncio
    async def test_empty_allow_list_yields_nothing(self):
        """Test an empty allow-list matches no unit, with or without search."""
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        searched = await engine.list_units(search="centro", allowed_ids=set())
        paged = await engine.list_units(page=1, page_size=10, allowed_ids=set())
        listed = await engine.list_units(allowed_ids=set())

        assert searched.total == 0 and searched.items == []
        assert paged.total == 0 and paged.items == []
        assert listed == []
        assert recorder.call_count == 0

    @pytest.mark.asyncio
    async def test_allow_list_is_resolved_and_paged_in_memory(self):
        """Test allow-listed units are batch-resolved, paged locally and enriched."""
        engine, recorder = make_engine(units_from_filter)
        coordinates = {"10": Coordinates(latitude=-23.5, longitude=-46.6)}

        result = await engine.list_units(
            page=1,
            page_size=2,
            allowed_ids={"10", "20", "30"},
            coordinates=coordinates,
        )

        assert result.total == 3
        assert result.total_pages == 2
        assert [item["data"]["externalId"] for item in result.items] == ["10", "20"]
        assert result.items[0]["data"]["address"] == {"latitude": -23.5, "longitude": -46.6}
        assert "address" not in result.items[1]["data"]

        request = content_calls(recorder)[0]
        assert query_params(request)["$filter"] == "data/externalId/iv in ('10','20','30')"
        assert "X-Resolve-Urls" not in request.headers

    @pytest.mark.asyncio
    async def test_allow_list_without_page_returns_every_unit(self):
        engine, _ = make_engine(units_from_filter)

        result = await engine.list_units(allowed_ids={"10", "20", "30"})

        assert isinstance(result, list)
        assert len(result) == 3

    @pytest.mark.asyncio
    async def test_enrichment_does_not_leak_into_cache(self):
        """Test a plain listing after an enriched one has no coordinates."""
        engine, recorder = make_engine(units_from_filter)

        await engine.list_units(allowed_ids={"10"}, coordinates={"10": Coordinates(latitude=1.0, longitude=2.0)})
        plain = await engine.list_units(allowed_ids={"10"})

        assert "address" not in plain[0]["data"]
        assert len(content_calls(recorder)) == 1

    @pytest.mark.asyncio
    async def test_single_page(self):
        """Test a page without search is one upstream skip/top call."""
        engine, recorder = make_engine(
            lambda request: json_response(200, TestDataFactory.envelope([TestDataFactory.unit("1")], total=41))
        )

        result = await engine.list_units(page=3, page_size=20)

        assert result.total == 41
        assert result.total_pages == 3
        request = content_calls(recorder)[0]
        assert query_params(request) == {"$top": "20", "$skip": "40"}
        assert request.headers["X-Flatten"] == "true"
        assert "X-Resolve-Urls" not in request.headers

    @pytest.mark.asyncio
    async def test_full_listing_fetches_every_page_in_order(self):
        """Test 450 units are fetched as three pages of 200 and concatenated."""

        def paged(request):
            params = query_params(request)
            skip, top = int(params["$skip"]), int(params["$top"])
            units = [TestDataFactory.unit(f"{n:03d}") for n in range(skip, min(skip + top, 450))]
            return json_response(200, TestDataFactory.envelope(units, total=450))

        engine, recorder = make_engine(paged)

        result = await engine.list_units()

        assert [item["data"]["externalId"] for item in result] == [f"{n:03d}" for n in range(450)]
        skips = sorted(int(query_params(r)["$skip"]) for r in content_calls(recorder))
        assert skips == [0, 200, 400]

    @pytest.mark.asyncio
    async def test_full_listing_single_page(self):
        engine, recorder = make_engine(
            lambda request: json_response(200, TestDataFactory.envelope([TestDataFactory.unit("1")]))
        )

        result = await engine.list_units()

        assert len(result) == 1
        assert len(content_calls(recorder)) == 1


class TestByExternalId:
    """Test cases for get_by_external_id."""

    @pytest.mark.asyncio
    async def test_filters_by_quoted_external_id(self):
        engine, recorder = make_engine(
            lambda request: json_response(200, TestDataFactory.envelope([TestDataFactory.unit("o'neil")]))
        )

        unit = await engine.get_by_external_id("o'neil")

        assert unit["data"]["externalId"] == "o'neil"
        params = query_params(content_calls(recorder)[0])
        assert params == {"$filter": "data/externalId/iv eq 'o''neil'", "$top": "1"}

    @pytest.mark.asyncio
    async def test_no_match_returns_none(self):
        engine, _ = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        assert await engine.get_by_external_id("404") is None


class TestBlog:
    """Test cases for blog queries."""

    @pytest.mark.asyncio
    async def test_posts_are_projected_to_data(self):
        posts = [TestDataFactory.blog_post("first-post"), TestDataFactory.blog_post("second-post")]
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope(posts, total=5)))

        result = await engine.get_blog_posts(page=1, page_size=2, search="  ")

        assert result.items == [
            {"slug": "first-post", "title": "First Post"},
            {"slug": "second-post", "title": "Second Post"},
        ]
        assert result.total_pages == 3

        request = content_calls(recorder)[0]
        assert request.url.path == "/api/content/site/blog"
        assert "fullText" not in q_param(request)
        assert "X-Resolve-Urls" not in request.headers

    @pytest.mark.asyncio
    async def test_search_is_sent_as_full_text(self):
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        await engine.get_blog_posts(page=2, page_size=5, search="tips")

        query = q_param(content_calls(recorder)[0])
        assert query["fullText"] == "tips"
        assert (query["skip"], query["take"]) == (5, 5)

    @pytest.mark.asyncio
    async def test_invalid_page_is_rejected(self):
        engine, recorder = make_engine(lambda request: json_response(200, TestDataFactory.envelope([])))

        with pytest.raises(ValidationError):
            await engine.get_blog_posts(page=0)
        assert recorder.call_count == 0

    @pytest.mark.asyncio
    async def test_post_by_slug(self):
        engine, recorder = make_engine(
            lambda request: json_response(200, TestDataFactory.envelope([TestDataFactory.blog_post("hello")]))
        )

        post = await engine.get_blog_post_by_slug("hello")

        assert post == {"slug": "hello", "title": "Hello"}
        assert query_params(content_calls(recorder)[0])["$filter"] == "data/slug/iv eq 'hello'"

    @pytest.mark.asyncio
    async def test_missing_slug_returns_none(self):
        engine, _ = make_engine(lambda request: json_response(404))

        assert await engine.get_blog_post_by_slug("gone") is None


class TestClearCache:
    """Test cases for clear_cache."""

    @pytest.mark.asyncio
    async def test_clear_forces_refetch(self):
        engine, recorder = make_engine(
            lambda request: json_response(200, TestDataFactory.envelope([{"data": {"title": "Home"}}]))
        )

        await engine.get_latest("home")
        assert engine.clear_cache() == 1
        await engine.get_latest("home")

        assert len(content_calls(recorder)) == 2
