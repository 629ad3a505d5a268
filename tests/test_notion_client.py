"""Tests for the Notion API client and the tree fetcher."""

import json
from unittest.mock import AsyncMock

import pytest
from conftest import T1, child_page, paragraph
from notionpull.exceptions import NotionApiError
from notionpull.http.protocols import HttpResponse
from notionpull.notion.client import NotionClient
from notionpull.notion.fetcher import TreeFetcher, is_transient

API = "https://api.notion.com/v1"


def json_response(body, status=200):
    return HttpResponse(
        status_code=status,
        content=json.dumps(body).encode("utf-8"),
        content_type="application/json",
        headers={"Content-Type": "application/json"},
        url=API,
    )


class TestNotionClient:
    """Tests for NotionClient."""

    def test_headers(self):
        headers = NotionClient.headers("secret_abc")
        assert headers["Authorization"] == "Bearer secret_abc"
        assert headers["Notion-Version"] == "2022-06-28"

    @pytest.mark.asyncio
    async def test_get_node_metadata(self):
        """Test that the page endpoint is parsed into PageMetadata."""
        http = AsyncMock()
        http.get.return_value = json_response(
            {"object": "page", "id": "ABC", "last_edited_time": T1, "properties": {"title": {}}}
        )

        meta = await NotionClient(http).get_node_metadata("abc")

        http.get.assert_awaited_once_with(f"{API}/pages/abc")
        assert meta.id == "abc"
        assert meta.last_edited_time == T1
        assert meta.properties == {"title": {}}

    @pytest.mark.asyncio
    async def test_children_follow_cursor(self):
        """Test that every page of a paginated listing is collected."""
        http = AsyncMock()
        http.get.side_effect = [
            json_response({"results": [paragraph("a")], "has_more": True, "next_cursor": "cur-1"}),
            json_response({"results": [child_page("b")], "has_more": False, "next_cursor": None}),
        ]

        blocks = await NotionClient(http).get_child_blocks("p")

        assert [b.id for b in blocks] == ["a", "b"]
        first, second = http.get.await_args_list
        assert first.kwargs["params"] == {"page_size": "100"}
        assert second.kwargs["params"] == {"page_size": "100", "start_cursor": "cur-1"}

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        """Test that a Notion error body becomes NotionApiError."""
        http = AsyncMock()
        http.get.return_value = json_response(
            {"object": "error", "status": 404, "code": "object_not_found", "message": "Could not find page"},
            status=404,
        )

        with pytest.raises(NotionApiError) as exc_info:
            await NotionClient(http).get_node_metadata("missing")

        assert exc_info.value.status == 404
        assert exc_info.value.code == "object_not_found"
        assert not exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_non_json_error(self):
        """Test that an HTML error page still raises with its status."""
        http = AsyncMock()
        http.get.return_value = HttpResponse(502, b"<html>Bad gateway</html>", "text/html", {}, API)

        with pytest.raises(NotionApiError) as exc_info:
            await NotionClient(http).get_child_blocks("p")

        assert exc_info.value.is_transient
        assert "Bad gateway" in str(exc_info.value)


class TestTreeFetcher:
    """Tests for TreeFetcher."""

    @pytest.mark.asyncio
    async def test_nested_blocks_expanded(self, tree):
        """Test that nested blocks are fetched but child pages are not entered."""
        tree.add_page(
            "p",
            T1,
            [paragraph("a", children=[paragraph("a1", children=[paragraph("a2")])]), child_page("c")],
        )
        tree.add_page("c", T1, [paragraph("inside")])

        snapshot = await TreeFetcher(tree).fetch_page("p")

        assert [b.id for b in snapshot.iter_blocks()] == ["a", "a1", "a2", "c"]
        assert "c" not in tree.children_calls
        assert snapshot.title == "Page p"

    @pytest.mark.asyncio
    async def test_transient_listing_retried_once(self, tree):
        """Test that a transient listing error is retried once."""
        tree.add_page("p", T1, [paragraph("a")])
        tree.fail_children["p"] = [NotionApiError(503, None, "busy")]

        blocks = await TreeFetcher(tree, listing_retry_delay=0).fetch_blocks("p")

        assert [b.id for b in blocks] == ["a"]
        assert tree.children_calls == ["p", "p"]

    @pytest.mark.asyncio
    async def test_second_transient_failure_propagates(self, tree):
        tree.add_page("p", T1, [paragraph("a")])
        tree.fail_children["p"] = [NotionApiError(503), NotionApiError(503)]

        with pytest.raises(NotionApiError):
            await TreeFetcher(tree, listing_retry_delay=0).fetch_blocks("p")

    @pytest.mark.asyncio
    async def test_permanent_listing_error_not_retried(self, tree):
        """Test that a 403 is raised immediately."""
        tree.add_page("p", T1)
        tree.fail_children["p"] = [NotionApiError(403, "restricted_resource")]

        with pytest.raises(NotionApiError):
            await TreeFetcher(tree, listing_retry_delay=0).fetch_blocks("p")

        assert tree.children_calls == ["p"]

    def test_is_transient(self):
        assert is_transient(NotionApiError(429))
        assert is_transient(ConnectionError())
        assert not is_transient(NotionApiError(400))
        assert not is_transient(ValueError())
