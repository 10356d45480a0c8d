"""End-to-end tests for NodeExecutor.run_node."""

import json

import pytest

from nodeflow.errors import (
    CyclicGraph,
    ExecutionFailed,
    NotFound,
    ProviderError,
    SandboxPolicyViolation,
)
from nodeflow.graph.executor import NodeExecutor
from nodeflow.llm.mock import MockProvider
from nodeflow.llm.provider import ProviderResponse
from nodeflow.observability import get_trace_context
from nodeflow.schemas.run import RunStatus

PROJECT = "p1"


@pytest.fixture
def provider():
    return MockProvider([ProviderResponse(output="generated text")])


@pytest.fixture
def executor(store, run_log, provider, config):
    config.default_provider = "mock"
    return NodeExecutor(store, run_log_store=run_log, providers={"mock": provider}, config=config)


async def only_run(run_log, node_id):
    runs = await run_log.list_runs(PROJECT, node_id)
    assert len(runs) == 1
    return runs[0]


class TestSuccess:
    @pytest.mark.asyncio
    async def test_text_node_run_is_recorded(self, executor, seed, run_log, make_node):
        await seed(make_node("a", content="hello"))

        result = await executor.run_node(PROJECT, "a")
        assert result.content == "hello"
        assert result.attempts == 1

        record = await only_run(run_log, "a")
        assert record.run_id == result.run_id
        assert record.status == RunStatus.SUCCEEDED
        assert len(record.input_hash) == 64
        assert record.logs.attempts == 1
        assert record.logs.timeline == ["Attempt 1 succeeded"]
        assert record.logs.engine == "nodeflow@0.1.0"
        assert get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_non_generative_content_is_written_back(
        self, executor, seed, store, make_node
    ):
        await seed(make_node("img", type="image_gen", content="a red fox"))

        await executor.run_node(PROJECT, "img")
        stored = await store.get_node(PROJECT, "img")
        assert json.loads(stored.content)["output_path"] == "project_output/img.png"
        assert stored.content_type == "application/json"

    @pytest.mark.asyncio
    async def test_generative_prompt_is_kept(self, executor, seed, store, run_log, make_node):
        node = make_node("gen", type="ai", content="Write a haiku", config={"ai": {}})
        await seed(node)

        result = await executor.run_node(PROJECT, "gen")
        assert result.content == "generated text"
        assert (await store.get_node(PROJECT, "gen")).content == "Write a haiku"
        record = await only_run(run_log, "gen")
        assert record.logs.provider == "mock"

    @pytest.mark.asyncio
    async def test_created_nodes_in_run_payload(
        self, executor, seed, provider, run_log, make_node
    ):
        provider.responses = [ProviderResponse(output='["https://x/a.png"]', job_id="job-1")]
        await seed(make_node("gen", type="ai", config={"ai": {"output_type": "node"}}))

        result = await executor.run_node(PROJECT, "gen")
        record = await only_run(run_log, "gen")
        assert [n.type for n in record.logs.created_nodes] == ["image"]
        assert record.logs.job_id == "job-1"
        assert result.created_nodes == record.logs.created_nodes
        assert result.content == "Created 1 artifact: 1 image."

    @pytest.mark.asyncio
    async def test_same_inputs_same_fingerprint(self, executor, seed, store, run_log, make_node):
        await seed(make_node("a", content="v1"), make_node("b", content="x"), edges=[("a", "b")])

        await executor.run_node(PROJECT, "b")
        await executor.run_node(PROJECT, "b")
        await store.update_node_content(PROJECT, "a", "v2")
        await executor.run_node(PROJECT, "b")

        newest, second, first = await run_log.list_runs(PROJECT, "b")
        assert first.input_hash == second.input_hash
        assert newest.input_hash != second.input_hash


class TestContextDepth:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "left_depth,expected", [(None, ["b"]), (0, []), ("2", ["a", "b"]), (50, ["a", "b"])]
    )
    async def test_left_depth(self, executor, seed, provider, make_node, left_depth, expected):
        gen = make_node("gen", type="ai", config={"ai": {"context_left_depth": left_depth}})
        await seed(
            make_node("a", content="first"),
            make_node("b", content="second"),
            gen,
            edges=[("a", "b"), ("b", "gen")],
        )

        await executor.run_node(PROJECT, "gen")
        assert [n.id for n in provider.requests[0].previous_nodes] == expected

    @pytest.mark.asyncio
    async def test_right_depth_defaults_to_zero(self, executor, seed, provider, make_node):
        gen = make_node("gen", type="ai", config={"ai": {}})
        await seed(gen, make_node("after"), edges=[("gen", "after")])

        await executor.run_node(PROJECT, "gen")
        assert provider.requests[0].next_nodes == []

    def test_non_generative_nodes_are_unbounded(self, executor, make_node):
        assert executor.context_depths(make_node("t")) == (None, None)


class TestFailure:
    @pytest.mark.asyncio
    async def test_provider_failure_after_retries(
        self, executor, seed, store, provider, run_log, make_node, fast_sleep
    ):
        provider.responses = [ProviderError("rate limited", provider="mock")]
        await seed(make_node("gen", type="ai", content="prompt", config={"ai": {}}))

        with pytest.raises(ExecutionFailed) as exc_info:
            await executor.run_node(PROJECT, "gen")
        assert exc_info.value.attempts == 3
        assert "after 3 attempts" in str(exc_info.value)

        record = await only_run(run_log, "gen")
        assert record.status == RunStatus.FAILED
        assert record.logs.attempts == 3
        assert len(record.logs.errors) == 3
        assert "Attempt 3 failed: rate limited" in record.logs.logs
        assert (await store.get_node(PROJECT, "gen")).content == "prompt"
        assert get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_schema_violation_fails_fast(
        self, executor, seed, run_log, make_node, fast_sleep
    ):
        parser = make_node("parse", type="parser", config={"parser": {"schema_ref": "MISSING"}})
        await seed(make_node("html", content="<p>x</p>"), parser, edges=[("html", "parse")])

        with pytest.raises(ExecutionFailed) as exc_info:
            await executor.run_node(PROJECT, "parse")
        assert exc_info.value.attempts == 1
        assert (await only_run(run_log, "parse")).logs.attempts == 1
        assert fast_sleep == []

    @pytest.mark.asyncio
    async def test_disallowed_import_fails_fast(
        self, executor, seed, store, run_log, make_node, fast_sleep
    ):
        script = make_node(
            "py",
            type="python",
            content="original",
            config={"script": {"code": "import socket\nprint('hi')"}},
        )
        await seed(script)

        with pytest.raises(ExecutionFailed) as exc_info:
            await executor.run_node(PROJECT, "py")
        assert isinstance(exc_info.value.cause, SandboxPolicyViolation)
        assert exc_info.value.attempts == 1
        assert fast_sleep == []

        record = await only_run(run_log, "py")
        assert record.status == RunStatus.FAILED
        assert record.logs.attempts == 1
        assert record.logs.errors[0]["type"] == "SandboxPolicyViolation"
        assert (await store.get_node(PROJECT, "py")).content == "original"

    @pytest.mark.asyncio
    async def test_missing_node_still_recorded(self, executor, run_log):
        with pytest.raises(NotFound):
            await executor.run_node(PROJECT, "ghost")

        record = await only_run(run_log, "ghost")
        assert record.status == RunStatus.FAILED
        assert record.logs.attempts == 0
        assert record.logs.errors[0]["type"] == "NotFound"

    @pytest.mark.asyncio
    async def test_infinite_folder_limit_falls_back(self, executor, seed, run_log, make_node):
        members = [make_node(f"m{i}", content=f"member {i}") for i in range(8)]
        folder = make_node(
            "f",
            type="folder",
            metadata={
                "folder_children": [m.id for m in members],
                "folder_context_limit": "Infinity",
            },
        )
        await seed(folder, *members, make_node("t", content="x"), edges=[("f", "t")])

        await executor.run_node(PROJECT, "t")
        assert (await only_run(run_log, "t")).status == RunStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_context_collection_error_still_recorded(
        self, executor, seed, run_log, make_node, monkeypatch
    ):
        def broken(*args, **kwargs):
            raise RuntimeError("context exploded")

        monkeypatch.setattr("nodeflow.graph.executor.collect_previous", broken)
        await seed(make_node("t", content="x"))

        with pytest.raises(RuntimeError):
            await executor.run_node(PROJECT, "t")
        record = await only_run(run_log, "t")
        assert record.status == RunStatus.FAILED
        assert record.logs.attempts == 0
        assert record.logs.errors[0] == {"type": "RuntimeError", "message": "context exploded"}
        assert get_trace_context() == {}

    @pytest.mark.asyncio
    async def test_cycle_still_recorded(self, executor, seed, store, run_log, make_node):
        await seed(make_node("a"), make_node("b"), edges=[("a", "b"), ("b", "a")])

        with pytest.raises(CyclicGraph):
            await executor.run_node(PROJECT, "a")
        record = await only_run(run_log, "a")
        assert record.logs.errors[0]["message"] == "Graph contains cycles. Execution aborted"
        assert len(await store.list_nodes(PROJECT)) == 2
