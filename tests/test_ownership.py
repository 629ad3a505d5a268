"""Tests for ResourceOwnershipTracker."""

import pytest
from conftest import T1, child_page, image, paragraph
from notionpull.models.tree import Block, PageSnapshot
from notionpull.notion.fetcher import TreeFetcher
from notionpull.sync.context import SyncContext
from notionpull.sync.ownership import ResourceOwnershipTracker, ResourceRef, resource_url


def blocks(*raw):
    return [Block.from_dict(b) for b in raw]


@pytest.fixture
def context():
    return SyncContext()


class TestResourceUrl:
    """Tests for resource_url."""

    def test_hosted_file(self):
        """Test URL of a Notion-hosted file."""
        block = Block.from_dict(image("i", "https://s3.example.com/a.png"))
        assert resource_url(block) == "https://s3.example.com/a.png"

    def test_external_file(self):
        """Test URL of an external file."""
        block = Block.from_dict(image("i", "https://cdn.example.com/b.gif", source="external"))
        assert resource_url(block) == "https://cdn.example.com/b.gif"

    def test_missing_payload(self):
        """Test that malformed blocks have no URL."""
        assert resource_url(Block(id="i", type="image")) is None


class TestBuildResourceMap:
    """Tests for the ownership pre-pass."""

    @pytest.mark.asyncio
    async def test_first_seen_in_pre_order_owns(self, tree, context):
        """Test that the root, then earlier branches, win ownership."""
        tree.add_page("c1", T1, [image("r2", "https://x/r2.png"), child_page("g")])
        tree.add_page("g", T1, [image("r3", "https://x/r3.png")])
        tree.add_page("c2", T1, [image("r2", "https://x/r2.png"), image("r3", "https://x/r3.png")])
        root = PageSnapshot(
            id="p",
            properties={},
            children=blocks(image("r1", "https://x/r1.png"), child_page("c1"), child_page("c2")),
            last_edited_time=T1,
        )
        tracker = ResourceOwnershipTracker(TreeFetcher(tree), context)

        owners = await tracker.build_resource_map("p", root)

        assert owners == {"r1": "p", "r2": "c1", "r3": "g"}
        assert context.resource_owners is owners

    @pytest.mark.asyncio
    async def test_child_page_visited_once(self, tree, context):
        """Test that a page linked twice is fetched once."""
        tree.add_page("c", T1)
        toggle = Block.from_dict(paragraph("x", children=[child_page("c")]))
        toggle.children = blocks(child_page("c"))
        root = PageSnapshot(
            id="p",
            properties={},
            children=[*blocks(child_page("c")), toggle],
            last_edited_time=T1,
        )
        tracker = ResourceOwnershipTracker(TreeFetcher(tree), context)

        await tracker.build_resource_map("p", root)

        assert tree.metadata_calls == ["c"]

    @pytest.mark.asyncio
    async def test_unfetchable_child_skipped(self, tree, context):
        """Test that a failing child page does not abort the pre-pass."""
        tree.add_page("c2", T1, [image("r", "https://x/r.png")])
        root = PageSnapshot(
            id="p",
            properties={},
            children=blocks(child_page("c1"), child_page("c2")),
            last_edited_time=T1,
        )
        tracker = ResourceOwnershipTracker(TreeFetcher(tree), context)

        owners = await tracker.build_resource_map("p", root)

        assert owners == {"r": "c2"}

    @pytest.mark.asyncio
    async def test_all_types_includes_files(self, tree, context):
        """Test that resource_types='all' also maps file/pdf/video/audio blocks."""
        pdf = {
            "id": "doc",
            "type": "pdf",
            "has_children": False,
            "pdf": {"type": "file", "file": {"url": "https://x/a.pdf"}},
        }
        root = PageSnapshot(id="p", properties={}, children=blocks(pdf), last_edited_time=T1)

        images_only = ResourceOwnershipTracker(TreeFetcher(tree), SyncContext())
        assert await images_only.build_resource_map("p", root) == {}

        everything = ResourceOwnershipTracker(TreeFetcher(tree), context, resource_types="all")
        assert await everything.build_resource_map("p", root) == {"doc": "p"}


class TestExtractOwnedResources:
    """Tests for extract_owned_resources."""

    def test_excludes_resources_owned_elsewhere(self, tree, context):
        """Test that resources owned by another page are skipped."""
        context.resource_owners.update({"r1": "p", "r2": "other"})
        tracker = ResourceOwnershipTracker(TreeFetcher(tree), context)

        refs = tracker.extract_owned_resources(
            blocks(image("r1", "https://x/1.png"), image("r2", "https://x/2.png")),
            "p",
        )

        assert refs == [ResourceRef("r1", "https://x/1.png", "image")]

    def test_unknown_resources_claimed(self, tree, context):
        """Test that unmapped resources are claimed by the caller."""
        tracker = ResourceOwnershipTracker(TreeFetcher(tree), context)

        refs = tracker.extract_owned_resources(blocks(image("r", "https://x/r.png")), "c")

        assert [r.block_id for r in refs] == ["r"]
        assert context.resource_owners == {"r": "c"}

    def test_nested_blocks_included_but_not_child_pages(self, tree, context):
        """Test that nested blocks are walked while child pages are not."""
        page_block = Block.from_dict(child_page("c"))
        page_block.children = blocks(image("inside", "https://x/in.png"))
        toggle = Block.from_dict(paragraph("t", children=[image("deep", "https://x/deep.png")]))
        toggle.children = blocks(image("deep", "https://x/deep.png"))
        tracker = ResourceOwnershipTracker(TreeFetcher(tree), context)

        refs = tracker.extract_owned_resources([toggle, page_block], "p")

        assert [r.block_id for r in refs] == ["deep"]
