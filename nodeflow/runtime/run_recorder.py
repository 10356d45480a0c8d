"""RunRecorder: writes one immutable RunRecord per node run.

The executor calls exactly one of ``record_success`` or ``record_failure``
when a run finishes, retries included. ``input_hash`` fingerprints what the
node saw; it is stored for debugging and history display only, runs are
never skipped because a fingerprint matches an earlier one.

Usage::

    recorder = RunRecorder(FileRunLogStore(root))
    started_at = recorder.now()
    ...
    await recorder.record_success(
        run_id, project_id, node_id, started_at, fingerprint, step, outcome
    )
"""

import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import Any

from nodeflow import __version__
from nodeflow.artifacts.snapshots import sanitize_meta_snapshot
from nodeflow.graph.context import NextNodeMetadata
from nodeflow.graph.dispatcher import StepResult
from nodeflow.graph.node import Node
from nodeflow.runtime.retry import RetryOutcome
from nodeflow.runtime.run_log_store import RunLogStore
from nodeflow.schemas.run import RunLogPayload, RunRecord, RunStatus

logger = logging.getLogger(__name__)

ENGINE_NAME = "nodeflow"


def hash_content(value: Any) -> str:
    """sha256 over the canonical JSON rendering of ``value``."""
    canonical = json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _node_fingerprint(node: Node) -> dict[str, Any]:
    return {
        "id": node.id,
        "type": node.type,
        "content_hash": hash_content(node.content or ""),
        "meta_hash": hash_content(node.metadata),
    }


def build_input_fingerprint(
    node: Node,
    previous: list[Node],
    next_nodes: list[NextNodeMetadata],
    engine_version: str = __version__,
) -> dict[str, Any]:
    """Node config and content plus content hashes of every context node."""
    return {
        "node": {
            "id": node.id,
            "type": node.type,
            "content": node.content,
            "config": node.config,
            "meta": node.metadata,
        },
        "previous": [_node_fingerprint(n) for n in previous],
        "next": [n.model_dump() for n in next_nodes],
        "engine_version": engine_version,
    }


class RunRecorder:
    def __init__(self, store: RunLogStore, engine: str | None = None) -> None:
        self._store = store
        self.engine = engine or f"{ENGINE_NAME}@{__version__}"

    @staticmethod
    def now() -> datetime:
        return datetime.now(UTC)

    async def record_success(
        self,
        run_id: str,
        project_id: str,
        node_id: str,
        started_at: datetime,
        fingerprint: dict[str, Any],
        step: StepResult,
        outcome: RetryOutcome,
    ) -> RunRecord:
        payload = RunLogPayload(
            status=RunStatus.SUCCEEDED,
            engine=self.engine,
            attempts=outcome.attempts,
            timeline=outcome.timeline,
            node_logs=step.logs,
            created_nodes=step.created_nodes,
            metadata=sanitize_meta_snapshot(step.metadata),
            provider=step.provider,
            job_id=step.job_id,
            job_payload=step.job_payload,
        )
        output = {
            "content": step.content,
            "content_type": step.content_type,
            "created_nodes": [n.node_id for n in step.created_nodes],
        }
        record = RunRecord(
            run_id=run_id,
            project_id=project_id,
            node_id=node_id,
            started_at=started_at,
            finished_at=self.now(),
            status=RunStatus.SUCCEEDED,
            input_hash=hash_content(fingerprint),
            output_hash=hash_content(output),
            logs=payload,
        )
        await self._store.append(record)
        logger.info(
            f"Recorded run {record.run_id} for node {node_id} ({record.duration_ms}ms)",
            extra={"latency_ms": record.duration_ms},
        )
        return record

    async def record_failure(
        self,
        run_id: str,
        project_id: str,
        node_id: str,
        started_at: datetime,
        fingerprint: dict[str, Any] | None,
        error: BaseException,
        attempts: int = 0,
        errors: list[dict[str, Any]] | None = None,
        logs: list[str] | None = None,
    ) -> RunRecord | None:
        """
        Store a failed run.

        A failure to write the record is logged rather than raised, so the
        caller always sees the run's own error.
        """
        message = str(error)
        payload = RunLogPayload(
            status=RunStatus.FAILED,
            engine=self.engine,
            attempts=attempts,
            errors=errors or [{"type": type(error).__name__, "message": message}],
            logs=logs or [message],
        )
        record = RunRecord(
            run_id=run_id,
            project_id=project_id,
            node_id=node_id,
            started_at=started_at,
            finished_at=self.now(),
            status=RunStatus.FAILED,
            input_hash=hash_content(fingerprint or {"node_id": node_id}),
            output_hash=hash_content({"error": message}),
            logs=payload,
        )
        try:
            await self._store.append(record)
        except Exception:
            logger.exception(f"Failed to store run record {record.run_id} for node {node_id}")
            return None
        logger.info(f"Recorded failed run {record.run_id} for node {node_id}: {message}")
        return record
