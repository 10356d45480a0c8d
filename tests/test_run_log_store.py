"""Tests for run recording and run log stores."""

from datetime import UTC, datetime, timedelta

import pytest

from nodeflow.errors import ProviderError
from nodeflow.graph.dispatcher import StepResult
from nodeflow.runtime.retry import RetryOutcome
from nodeflow.runtime.run_log_store import FileRunLogStore, InMemoryRunLogStore
from nodeflow.runtime.run_recorder import RunRecorder, build_input_fingerprint, hash_content
from nodeflow.schemas.run import RunLogPayload, RunRecord, RunStatus

PROJECT = "p1"


def make_record(node_id="n1", offset_s=0, status=RunStatus.SUCCEEDED):
    started = datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=offset_s)
    return RunRecord(
        project_id=PROJECT,
        node_id=node_id,
        started_at=started,
        finished_at=started + timedelta(milliseconds=250),
        status=status,
        input_hash="in",
        output_hash="out",
        logs=RunLogPayload(status=status, engine="nodeflow@test"),
    )


class TestHashing:
    def test_hash_is_key_order_independent(self):
        assert hash_content({"a": 1, "b": [1, 2]}) == hash_content({"b": [1, 2], "a": 1})
        assert hash_content({"a": 1}) != hash_content({"a": 2})

    def test_fingerprint_tracks_upstream_content(self, make_node):
        node = make_node("b", content="x")
        first = build_input_fingerprint(node, [make_node("a", content="v1")], [])
        second = build_input_fingerprint(node, [make_node("a", content="v2")], [])
        assert hash_content(first) != hash_content(second)
        assert first["engine_version"] == "0.1.0"


class TestRunRecorder:
    @pytest.mark.asyncio
    async def test_record_success(self, run_log):
        recorder = RunRecorder(run_log)
        step = StepResult(content="done", logs=["step log"], metadata={"blob": "x" * 5000})
        outcome = RetryOutcome(value=step, attempts=2, timeline=["Attempt 2 succeeded"])

        record = await recorder.record_success(
            "run-1", PROJECT, "n1", recorder.now(), {"node": "n1"}, step, outcome
        )
        assert record.run_id == "run-1"
        assert record.status == RunStatus.SUCCEEDED
        assert record.logs.node_logs == ["step log"]
        assert record.logs.attempts == 2
        assert record.logs.metadata["blob"].endswith("…")
        assert run_log.records == [record]

    @pytest.mark.asyncio
    async def test_record_failure_hashes_error(self, run_log):
        recorder = RunRecorder(run_log)
        error = ProviderError("boom")

        record = await recorder.record_failure("run-2", PROJECT, "n1", recorder.now(), None, error)
        assert record.status == RunStatus.FAILED
        assert record.output_hash == hash_content({"error": "boom"})
        assert record.logs.errors == [{"type": "ProviderError", "message": "boom"}]
        assert record.logs.logs == ["boom"]

    @pytest.mark.asyncio
    async def test_record_failure_survives_store_errors(self):
        class BrokenStore(InMemoryRunLogStore):
            async def append(self, record):
                raise OSError("disk full")

        recorder = RunRecorder(BrokenStore())
        result = await recorder.record_failure(
            "run-3", PROJECT, "n1", recorder.now(), None, ValueError("x")
        )
        assert result is None


class TestInMemoryRunLogStore:
    @pytest.mark.asyncio
    async def test_newest_first_with_limit(self):
        store = InMemoryRunLogStore()
        for offset in (0, 2, 1):
            await store.append(make_record(offset_s=offset))
        await store.append(make_record(node_id="other"))

        runs = await store.list_runs(PROJECT, "n1", limit=2)
        assert [r.started_at.second for r in runs] == [2, 1]


class TestFileRunLogStore:
    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        store = FileRunLogStore(tmp_path)
        record = make_record()
        await store.append(record)

        path = tmp_path / PROJECT / "runs" / "n1.jsonl"
        assert path.exists()
        (loaded,) = await store.list_runs(PROJECT, "n1")
        assert loaded == record
        assert loaded.duration_ms == 250

    @pytest.mark.asyncio
    async def test_corrupt_lines_skipped(self, tmp_path):
        store = FileRunLogStore(tmp_path)
        await store.append(make_record(offset_s=0))
        path = tmp_path / PROJECT / "runs" / "n1.jsonl"
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"truncated": \n\n')
        await store.append(make_record(offset_s=5))

        runs = await store.list_runs(PROJECT, "n1")
        assert [r.started_at.second for r in runs] == [5, 0]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert await FileRunLogStore(tmp_path).list_runs(PROJECT, "nobody") == []

    @pytest.mark.asyncio
    async def test_rejects_traversal(self, tmp_path):
        with pytest.raises(ValueError):
            await FileRunLogStore(tmp_path).list_runs("../etc", "n1")
