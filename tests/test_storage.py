"""Tests for graph stores and asset storage."""

import asyncio

import pytest

from nodeflow.errors import NotFound
from nodeflow.storage.assets import LocalAssetStorage, decode_data_uri
from nodeflow.storage.backend import InMemoryGraphStore
from nodeflow.storage.file_store import FileGraphStore, validate_key

PROJECT = "p1"


class TestInMemoryGraphStore:
    @pytest.mark.asyncio
    async def test_create_and_connect(self, store):
        a = await store.create_node(PROJECT, type="text", title="A", position=(10, 20))
        b = await store.create_node(PROJECT, type="image", title="B")
        edge = await store.add_edge(PROJECT, a.id, b.id, label="asset")

        assert edge.label == "asset"
        assert (a.ui.bbox.x1, a.ui.bbox.y1) == (10, 20)
        assert (await store.get_node(PROJECT, a.id)).connections.outgoing == [b.id]
        assert (await store.get_node(PROJECT, b.id)).connections.incoming == [a.id]

    @pytest.mark.asyncio
    async def test_add_edge_requires_both_ends(self, store):
        a = await store.create_node(PROJECT, type="text", title="A")
        with pytest.raises(NotFound):
            await store.add_edge(PROJECT, a.id, "missing")

    @pytest.mark.asyncio
    async def test_metadata_patch_is_shallow_merge(self, store):
        node = await store.create_node(PROJECT, type="text", title="A", metadata={"k": 1, "x": 2})
        updated = await store.update_node_metadata(PROJECT, node.id, {"x": 3, "y": 4})
        assert updated.metadata == {"k": 1, "x": 3, "y": 4}

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, store):
        existing = await store.create_node(PROJECT, type="text", title="keep")

        with pytest.raises(RuntimeError):
            async with store.transaction(PROJECT):
                node = await store.create_node(PROJECT, type="image", title="half")
                await store.add_edge(PROJECT, existing.id, node.id)
                raise RuntimeError("crash between writes")

        assert [n.title for n in await store.list_nodes(PROJECT)] == ["keep"]
        assert await store.list_edges(PROJECT) == []
        assert (await store.get_node(PROJECT, existing.id)).connections.outgoing == []

    @pytest.mark.asyncio
    async def test_rollback_keeps_other_tasks_writes(self, store):
        a = await store.create_node(PROJECT, type="text", title="A")
        b = await store.create_node(PROJECT, type="text", title="B")
        inside = asyncio.Event()
        release = asyncio.Event()

        async def failing_run():
            with pytest.raises(RuntimeError):
                async with store.transaction(PROJECT):
                    await store.update_node_metadata(PROJECT, a.id, {"draft": True})
                    inside.set()
                    await release.wait()
                    raise RuntimeError("run log append failed")

        async def other_run():
            await inside.wait()
            write = asyncio.create_task(
                store.update_node_metadata(PROJECT, b.id, {"provider_job": "job-b"})
            )
            await asyncio.sleep(0)
            assert not write.done()
            release.set()
            await write

        await asyncio.gather(failing_run(), other_run())
        assert (await store.get_node(PROJECT, a.id)).metadata == {}
        assert (await store.get_node(PROJECT, b.id)).metadata == {"provider_job": "job-b"}

    @pytest.mark.asyncio
    async def test_nested_transaction_joins_outer(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction(PROJECT):
                await store.create_node(PROJECT, type="text", title="outer")
                async with store.transaction(PROJECT):
                    await store.create_node(PROJECT, type="text", title="inner")
                raise RuntimeError("abort")

        assert await store.list_nodes(PROJECT) == []


class TestFileGraphStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        first = FileGraphStore(tmp_path)
        a = await first.create_node(PROJECT, type="text", title="A", content="hi")
        async with first.transaction(PROJECT):
            b = await first.create_node(PROJECT, type="text", title="B")
            await first.add_edge(PROJECT, a.id, b.id)

        second = FileGraphStore(tmp_path)
        assert {n.title for n in await second.list_nodes(PROJECT)} == {"A", "B"}
        (edge,) = await second.list_edges(PROJECT)
        assert (edge.from_node, edge.to_node) == (a.id, b.id)
        assert (tmp_path / PROJECT / "graph.json").exists()

    @pytest.mark.asyncio
    async def test_rolled_back_writes_not_persisted(self, tmp_path):
        store = FileGraphStore(tmp_path)
        await store.create_node(PROJECT, type="text", title="A")
        with pytest.raises(RuntimeError):
            async with store.transaction(PROJECT):
                await store.create_node(PROJECT, type="text", title="B")
                raise RuntimeError("abort")

        reloaded = FileGraphStore(tmp_path)
        assert [n.title for n in await reloaded.list_nodes(PROJECT)] == ["A"]


@pytest.mark.parametrize("key", ["", "a/b", "..", ".hidden", "C:evil", "nul\x00"])
def test_validate_key_rejects(key):
    with pytest.raises(ValueError):
        validate_key(key)


class TestAssets:
    def test_decode_data_uri(self):
        assert decode_data_uri("data:image/png;base64,aGk=") == ("image/png", b"hi")
        with pytest.raises(ValueError):
            decode_data_uri("https://x/a.png")

    @pytest.mark.asyncio
    async def test_save_bytes(self, tmp_path):
        storage = LocalAssetStorage(tmp_path, public_base_url="/files/")
        saved = await storage.save_asset(
            PROJECT, b"\x00\x01", subdir="videos", mime_type="video/mp4"
        )

        assert saved.size == 2
        assert saved.mime_type == "video/mp4"
        assert saved.public_url == f"/files/{saved.relative_path}"
        assert (tmp_path / saved.relative_path).read_bytes() == b"\x00\x01"
