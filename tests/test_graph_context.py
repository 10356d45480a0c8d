"""Tests for topological ordering and context collection."""

import pytest

from nodeflow.errors import CyclicGraph, NotFound
from nodeflow.graph.context import (
    GraphContextBuilder,
    collect_files,
    collect_next_metadata,
    collect_previous,
    folder_context_limit,
    normalize_context_depth,
    topological_sort,
)
from nodeflow.graph.edge import Edge
from nodeflow.graph.node import Node

PROJECT = "p1"


def edge(a, b, **kwargs):
    return Edge(id=f"{a}-{b}", from_node=a, to_node=b, **kwargs)


def nodes_by_id(*nodes):
    return {n.id: n for n in nodes}


class TestTopologicalSort:
    def test_chain_order(self):
        order, has_cycle = topological_sort(["c", "b", "a"], [edge("a", "b"), edge("b", "c")])
        assert has_cycle is False
        assert order == ["a", "b", "c"]

    def test_order_covers_every_node(self):
        ids = ["a", "b", "c", "d", "e"]
        edges = [edge("a", "c"), edge("b", "c"), edge("c", "d")]
        order, has_cycle = topological_sort(ids, edges)
        assert not has_cycle
        assert sorted(order) == sorted(ids)
        assert order.index("a") < order.index("c") < order.index("d")
        assert order.index("b") < order.index("c")

    def test_cycle_detected(self):
        _, has_cycle = topological_sort(["a", "b", "c"], [edge("a", "b"), edge("b", "a")])
        assert has_cycle is True

    def test_dangling_edges_ignored(self):
        order, has_cycle = topological_sort(["a", "b"], [edge("a", "b"), edge("b", "ghost")])
        assert not has_cycle
        assert order == ["a", "b"]


class TestDepthNormalisation:
    @pytest.mark.parametrize(
        "raw,expected",
        [(None, 1), (3, 3), ("4", 4), ("2.9", 2), (-5, 0), (99, 10), ("abc", 1), (True, 1)],
    )
    def test_normalize(self, raw, expected):
        assert normalize_context_depth(raw, fallback=1) == expected

    def test_folder_limit_default_and_cap(self, make_node):
        assert folder_context_limit(make_node("f", type="folder")) == 6
        capped = make_node("f", type="folder", metadata={"folder_context_limit": 100})
        assert folder_context_limit(capped) == 24
        invalid = make_node("f", type="folder", metadata={"folder_context_limit": 0})
        assert folder_context_limit(invalid) == 6
        custom = make_node("f", type="folder", metadata={"folder_context_limit": "3"})
        assert folder_context_limit(custom) == 3

    @pytest.mark.parametrize("raw", ["Infinity", "-inf", "nan", 1e400])
    def test_folder_limit_non_finite_uses_default(self, make_node, raw):
        node = make_node("f", type="folder", metadata={"folder_context_limit": raw})
        assert folder_context_limit(node) == 6


class TestCollectPrevious:
    def test_depth_one_returns_direct_parent(self, make_node):
        nodes = nodes_by_id(make_node("a"), make_node("b"))
        edges = [edge("a", "b")]
        order, _ = topological_sort(nodes, edges)

        previous = collect_previous("b", order, nodes, edges, max_depth=1)
        assert [n.id for n in previous] == ["a"]

    def test_depth_zero_returns_nothing(self, make_node):
        nodes = nodes_by_id(make_node("a"), make_node("b"))
        edges = [edge("a", "b")]
        order, _ = topological_sort(nodes, edges)

        assert collect_previous("b", order, nodes, edges, max_depth=0) == []

    def test_depth_bound_respected(self, make_node):
        nodes = nodes_by_id(*(make_node(i) for i in "abcd"))
        edges = [edge("a", "b"), edge("b", "c"), edge("c", "d")]
        order, _ = topological_sort(nodes, edges)

        assert [n.id for n in collect_previous("d", order, nodes, edges, max_depth=2)] == [
            "b",
            "c",
        ]
        assert [n.id for n in collect_previous("d", order, nodes, edges)] == ["a", "b", "c"]

    def test_diamond_includes_each_node_once(self, make_node):
        nodes = nodes_by_id(*(make_node(i) for i in "abcd"))
        edges = [edge("a", "b"), edge("a", "c"), edge("b", "d"), edge("c", "d")]
        order, _ = topological_sort(nodes, edges)

        previous = collect_previous("d", order, nodes, edges, max_depth=2)
        assert sorted(n.id for n in previous) == ["a", "b", "c"]
        assert previous[0].id == "a"

    def test_container_members_spliced_after_container(self, make_node):
        members = [make_node(f"m{i}") for i in range(10)]
        folder = make_node(
            "folder", type="folder", metadata={"folder_children": [m.id for m in members]}
        )
        target = make_node("t")
        nodes = nodes_by_id(folder, target, *members)
        edges = [edge("folder", "t")]
        order, _ = topological_sort(nodes, edges)

        previous = collect_previous("t", order, nodes, edges, max_depth=1)
        assert [n.id for n in previous] == ["folder", "m4", "m5", "m6", "m7", "m8", "m9"]

    def test_container_member_already_upstream_not_repeated(self, make_node):
        folder = make_node("folder", type="folder", metadata={"folder_children": ["a"]})
        nodes = nodes_by_id(make_node("a"), folder, make_node("t"))
        edges = [edge("a", "folder"), edge("folder", "t")]
        order, _ = topological_sort(nodes, edges)

        previous = collect_previous("t", order, nodes, edges)
        assert [n.id for n in previous] == ["a", "folder"]


class TestCollectNextMetadata:
    def test_labels_only_on_direct_children(self, make_node):
        nodes = nodes_by_id(
            make_node("a"), make_node("b", content="x" * 300), make_node("c")
        )
        edges = [edge("a", "b", label="feeds"), edge("b", "c", label="later")]

        result = collect_next_metadata("a", nodes, edges, max_depth=2)
        by_id = {m.node_id: m for m in result}
        assert by_id["b"].connection_labels == ["feeds"]
        assert by_id["c"].connection_labels == []
        assert len(by_id["b"].short_description) == 200

    def test_depth_zero(self, make_node):
        nodes = nodes_by_id(make_node("a"), make_node("b"))
        assert collect_next_metadata("a", nodes, [edge("a", "b")], max_depth=0) == []


def test_collect_files_from_media_ports(make_node):
    image = make_node("img", type="image", metadata={"image_url": "https://x/cat.png"})
    short_text = make_node("short", content="tiny")
    html = make_node("page", type="html", content="<p>hi</p>")
    target = make_node("gen", type="ai")
    edges = [
        edge("img", "gen", target_handle="style_reference"),
        edge("short", "gen", target_handle="text_input"),
        edge("page", "gen", target_handle="file_input"),
    ]

    files = collect_files("gen", [image, short_text, html], edges)
    assert [(f.name, f.type) for f in files] == [
        ("style_reference", "image/url"),
        ("file_input", "text/html"),
    ]


class TestGraphContextBuilder:
    @pytest.mark.asyncio
    async def test_build_context(self, seed, store, make_node):
        await seed(make_node("a"), make_node("b"), edges=[("a", "b")])

        ctx = await GraphContextBuilder(store).build_context(PROJECT, "b")
        assert ctx.node.id == "b"
        assert ctx.order == ["a", "b"]
        assert len(ctx.edges) == 1

    @pytest.mark.asyncio
    async def test_missing_node(self, seed, store, make_node):
        await seed(make_node("a"))
        with pytest.raises(NotFound):
            await GraphContextBuilder(store).build_context(PROJECT, "nope")

    @pytest.mark.asyncio
    async def test_cycle_rejected(self, seed, store, make_node):
        await seed(make_node("a"), make_node("b"), edges=[("a", "b"), ("b", "a")])
        with pytest.raises(CyclicGraph):
            await GraphContextBuilder(store).build_context(PROJECT, "a")


def test_node_settings_views():
    node = Node(
        id="n",
        project_id=PROJECT,
        type="ai",
        config={"ai": {"provider": "replicate", "output_type": "folder", "seed": 7}},
    )
    settings = node.generative_settings()
    assert settings.provider == "replicate"
    assert settings.shape == "folder"
    assert settings.model_extra == {"seed": 7}
    assert Node(id="t", project_id=PROJECT, type="ai").generative_settings().shape == "text"
