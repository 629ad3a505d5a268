"""Tests for the Syncer streaming API."""

import json

import pytest
from conftest import T1, T2, FakeDownloadHttp, FakeTreeClient, child_page, image, paragraph
from notionpull import EventType, NotionpullConfig, Syncer, sync_blocking
from notionpull.exceptions import ConfigError


@pytest.fixture
def workspace():
    """Root page p with one child page c and one image."""
    client = FakeTreeClient()
    client.add_page("p", T1, [paragraph("intro"), image("img", "https://files.example.com/a.png"), child_page("c")])
    client.add_page("c", T1, [paragraph("body")])
    return client


@pytest.fixture
def files():
    return FakeDownloadHttp({"https://files.example.com/a.png": b"png-bytes"})


def make_config(tmp_path, pages=("p",), **kwargs):
    return NotionpullConfig(pages=list(pages), output={"directory": tmp_path}, **kwargs)


async def collect(syncer):
    return [event async for event in syncer.run()]


class TestSyncerRun:
    """Tests for Syncer.run()."""

    @pytest.mark.asyncio
    async def test_event_stream_brackets_root(self, tmp_path, workspace, files):
        """Test that coordinator events are forwarded between root events."""
        async with Syncer(make_config(tmp_path), client=workspace, download_client=files) as syncer:
            events = await collect(syncer)

        types = [e.type for e in events]
        assert types[:3] == [EventType.STARTED, EventType.ROOT_STARTED, EventType.PAGE_FETCHED]
        assert types[-2:] == [EventType.ROOT_COMPLETED, EventType.COMPLETED]
        saved = [e.page_id for e in events if e.type == EventType.PAGE_SAVED]
        assert saved == ["p", "c"]
        assert EventType.RESOURCE_DOWNLOADED in types

    @pytest.mark.asyncio
    async def test_files_and_stats(self, tmp_path, workspace, files):
        """Test that snapshots, attachments and the cache map are written."""
        async with Syncer(make_config(tmp_path), client=workspace, download_client=files) as syncer:
            await collect(syncer)

        assert (tmp_path / "p" / "p.json").is_file()
        assert (tmp_path / "p" / "c" / "c.json").is_file()
        assert (tmp_path / "p" / "assets" / "img.png").read_bytes() == b"png-bytes"
        cache = json.loads((tmp_path / ".cache" / "cache-map.json").read_text(encoding="utf-8"))
        assert list(cache) == ["p"]
        assert [r["id"] for r in cache["p"]["children"]] == ["c"]

        stats = syncer.stats
        assert stats.roots_total == 1
        assert stats.pages_synced == 2
        assert stats.resources_downloaded == 1
        assert stats.bytes_downloaded == len(b"png-bytes")

    @pytest.mark.asyncio
    async def test_second_run_hits_cache(self, tmp_path, workspace, files):
        """Test that an unchanged tree is skipped on the next run."""
        async with Syncer(make_config(tmp_path), client=workspace, download_client=files) as syncer:
            await collect(syncer)

        async with Syncer(make_config(tmp_path), client=workspace, download_client=files) as syncer:
            events = await collect(syncer)

        assert [e.page_id for e in events if e.type == EventType.PAGE_CACHE_HIT] == ["p"]
        assert syncer.stats.pages_synced == 0
        assert syncer.stats.pages_skipped == 1

    @pytest.mark.asyncio
    async def test_changed_child_partially_updated(self, tmp_path, workspace, files):
        """Test that a changed child under an unchanged root is refreshed alone."""
        async with Syncer(make_config(tmp_path), client=workspace, download_client=files) as syncer:
            await collect(syncer)

        workspace.touch("c", T2)
        async with Syncer(make_config(tmp_path), client=workspace, download_client=files) as syncer:
            events = await collect(syncer)

        assert [e.page_id for e in events if e.type == EventType.PAGE_PARTIAL_UPDATE] == ["p"]
        assert [e.page_id for e in events if e.type == EventType.PAGE_SAVED] == ["c"]

    @pytest.mark.asyncio
    async def test_failing_root_does_not_stop_others(self, tmp_path, workspace, files):
        """Test that each root is reported and later roots still run."""
        config = make_config(tmp_path, pages=("missing", "p"))

        async with Syncer(config, client=workspace, download_client=files) as syncer:
            events = await collect(syncer)

        outcomes = [
            (e.type, e.page_id) for e in events if e.type in (EventType.ROOT_FAILED, EventType.ROOT_COMPLETED)
        ]
        assert outcomes == [(EventType.ROOT_FAILED, "missing"), (EventType.ROOT_COMPLETED, "p")]
        assert syncer.stats.roots_failed == 1
        assert events[-1].type == EventType.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_root(self, tmp_path, workspace, files):
        """Test that cancel() lets the current root finish and skips the rest."""
        workspace.add_page("q", T1)
        config = make_config(tmp_path, pages=("p", "q"))

        async with Syncer(config, client=workspace, download_client=files) as syncer:
            events = []
            async for event in syncer.run():
                events.append(event)
                if event.type == EventType.ROOT_STARTED:
                    syncer.cancel()

        types = [e.type for e in events]
        assert EventType.ROOT_COMPLETED in types
        assert types[-1] == EventType.CANCELLED
        assert "q" not in workspace.metadata_calls

    @pytest.mark.asyncio
    async def test_roots_run_together(self, tmp_path, files):
        """Test that root_concurrency starts several roots before any finishes."""
        client = FakeTreeClient(delay=0.01)
        client.add_page("p", T1, [paragraph("one")])
        client.add_page("q", T1, [paragraph("two")])
        config = make_config(tmp_path, pages=("p", "q"), sync={"root_concurrency": 2})

        async with Syncer(config, client=client, download_client=files) as syncer:
            events = await collect(syncer)

        brackets = [
            (e.type, e.page_id) for e in events if e.type in (EventType.ROOT_STARTED, EventType.ROOT_COMPLETED)
        ]
        assert brackets[:2] == [(EventType.ROOT_STARTED, "p"), (EventType.ROOT_STARTED, "q")]
        assert {page_id for kind, page_id in brackets[2:]} == {"p", "q"}
        assert client.max_active >= 2
        assert events[-1].type == EventType.COMPLETED
        assert syncer.stats.pages_synced == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("root_concurrency", [1, 2])
    async def test_each_root_owns_its_resources(self, tmp_path, root_concurrency):
        """Test that an attachment block shared by two roots is downloaded under both."""
        url = "https://files.example.com/shared.png"
        client = FakeTreeClient()
        client.add_page("p", T1, [image("img", url)])
        client.add_page("q", T1, [image("img", url)])
        http = FakeDownloadHttp({url: b"shared"})
        config = make_config(tmp_path, pages=("p", "q"), sync={"root_concurrency": root_concurrency})

        async with Syncer(config, client=client, download_client=http) as syncer:
            events = await collect(syncer)

        downloaded = [e.page_id for e in events if e.type == EventType.RESOURCE_DOWNLOADED]
        assert sorted(downloaded) == ["p", "q"]
        assert syncer.stats.resources_downloaded == 2

    @pytest.mark.asyncio
    async def test_duplicate_roots_synced_once(self, tmp_path, files):
        """Test that a root listed as an id and as a URL is synced once."""
        page_id = "8c0f1e4b-2d9a-4c7e-9f3b-5a6d7e8f9a0b"
        client = FakeTreeClient()
        client.add_page(page_id, T1)
        config = make_config(
            tmp_path,
            pages=("8c0f1e4b2d9a4c7e9f3b5a6d7e8f9a0b", "https://www.notion.so/Wiki-8c0f1e4b2d9a4c7e9f3b5a6d7e8f9a0b"),
        )

        async with Syncer(config, client=client, download_client=files) as syncer:
            events = await collect(syncer)

        assert [e.page_id for e in events if e.type == EventType.ROOT_STARTED] == [page_id]
        assert syncer.stats.roots_total == 1

    @pytest.mark.asyncio
    async def test_url_roots_normalized(self, tmp_path, files):
        """Test that Notion URLs are reduced to page ids."""
        page_id = "8c0f1e4b-2d9a-4c7e-9f3b-5a6d7e8f9a0b"
        client = FakeTreeClient()
        client.add_page(page_id, T1)
        config = make_config(tmp_path, pages=("https://www.notion.so/Wiki-8c0f1e4b2d9a4c7e9f3b5a6d7e8f9a0b",))

        async with Syncer(config, client=client, download_client=files) as syncer:
            await collect(syncer)

        assert client.metadata_calls == [page_id]

    @pytest.mark.asyncio
    async def test_run_requires_context(self, tmp_path):
        syncer = Syncer(make_config(tmp_path))
        with pytest.raises(RuntimeError, match="not initialized"):
            await collect(syncer)


class TestSyncerSetup:
    """Tests for Syncer initialization."""

    @pytest.mark.asyncio
    async def test_missing_api_key(self, tmp_path, monkeypatch):
        """Test that a missing token is a configuration error."""
        monkeypatch.delenv("NOTION_API_KEY", raising=False)

        with pytest.raises(ConfigError, match="API key"):
            async with Syncer(make_config(tmp_path)):
                pass

    def test_cancel_flag(self, tmp_path):
        syncer = Syncer(make_config(tmp_path))
        assert syncer._cancelled is False
        syncer.cancel()
        assert syncer._cancelled is True

    @pytest.mark.asyncio
    async def test_sync_blocking_rejects_running_loop(self):
        """Test that sync_blocking refuses to nest event loops."""
        with pytest.raises(RuntimeError, match="async context"):
            sync_blocking(["p"])
