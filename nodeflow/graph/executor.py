"""
Node Executor - runs one node of a project graph.

A run goes through four stages:
1. Build the execution context (graph snapshot, topological order)
2. Collect upstream context and downstream metadata within depth bounds
3. Dispatch to the node's handler under the retry coordinator
4. Persist the outcome and record exactly one RunRecord

Failures at any stage still produce a failed RunRecord before the error
reaches the caller. Stored node content is only written after the whole
run succeeded.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from nodeflow.artifacts.materializer import ArtifactMaterializer
from nodeflow.config import EngineConfig
from nodeflow.errors import CyclicGraph, ExecutionFailed, NotFound
from nodeflow.graph.code_sandbox import CodeSandbox
from nodeflow.graph.context import (
    ExecutionContext,
    GraphContextBuilder,
    collect_next_metadata,
    collect_previous,
    normalize_context_depth,
)
from nodeflow.graph.dispatcher import NodeDispatcher, StepContext, StepResult
from nodeflow.graph.handlers import build_default_dispatcher
from nodeflow.graph.node import Node
from nodeflow.graph.schemas import SchemaRegistry
from nodeflow.llm.litellm import LiteLLMProvider
from nodeflow.llm.provider import GenerativeProvider
from nodeflow.llm.replicate import ReplicateProvider
from nodeflow.observability import clear_trace_context, set_trace_context
from nodeflow.runtime.retry import RetryCoordinator
from nodeflow.runtime.run_log_store import FileRunLogStore, RunLogStore
from nodeflow.runtime.run_recorder import RunRecorder, build_input_fingerprint
from nodeflow.schemas.run import CreatedNodeSummary, RunRecord, RunStatus
from nodeflow.storage.assets import LocalAssetStorage
from nodeflow.storage.backend import GraphStore

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of a successful node run."""

    run_id: str
    node_id: str
    content: str | None
    content_type: str | None
    status: RunStatus = RunStatus.SUCCEEDED
    created_nodes: list[CreatedNodeSummary] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    attempts: int = 1
    record: RunRecord | None = None


def default_providers(config: EngineConfig) -> dict[str, GenerativeProvider]:
    return {
        "litellm": LiteLLMProvider(model=config.default_model),
        "replicate": ReplicateProvider(),
    }


class NodeExecutor:
    """
    Runs single nodes against a graph store.

    Collaborators not given are built from ``config``: a file run log and
    asset storage under ``storage_root``, the script sandbox, and the
    LiteLLM and Replicate providers.
    """

    def __init__(
        self,
        store: GraphStore,
        run_log_store: RunLogStore | None = None,
        providers: dict[str, GenerativeProvider] | None = None,
        config: EngineConfig | None = None,
        dispatcher: NodeDispatcher | None = None,
        sandbox: CodeSandbox | None = None,
        assets: LocalAssetStorage | None = None,
        schemas: SchemaRegistry | None = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.recorder = RunRecorder(run_log_store or FileRunLogStore(self.config.storage_root))
        self.context_builder = GraphContextBuilder(store)
        self.retry = RetryCoordinator(
            max_attempts=self.config.max_attempts,
            backoff_ms=self.config.backoff_ms,
            retry_structural_errors=self.config.retry_structural_errors,
        )
        self.materializer = ArtifactMaterializer(
            store,
            assets=assets
            or LocalAssetStorage(self.config.storage_root, self.config.public_base_url),
        )
        self.dispatcher = dispatcher or build_default_dispatcher(
            store,
            providers if providers is not None else default_providers(self.config),
            self.materializer,
            sandbox
            or CodeSandbox(
                self.config.storage_root,
                allowed_modules=self.config.sandbox_allowed_modules,
                timeout_seconds=self.config.sandbox_timeout_seconds,
                python=self.config.sandbox_python,
            ),
            schemas=schemas,
            default_provider=self.config.default_provider,
        )

    def context_depths(self, node: Node) -> tuple[int | None, int | None]:
        """Upstream and downstream depth bounds; only generative nodes are bounded."""
        if not node.is_generative:
            return None, None
        settings = node.generative_settings()
        left = normalize_context_depth(
            settings.context_left_depth,
            self.config.default_left_depth,
            self.config.max_context_depth,
        )
        right = normalize_context_depth(
            settings.context_right_depth,
            self.config.default_right_depth,
            self.config.max_context_depth,
        )
        return left, right

    def _prepare_step(
        self, ctx: ExecutionContext, project_settings: dict[str, Any] | None
    ) -> tuple[StepContext, dict[str, Any]]:
        node_id = ctx.node.id
        left, right = self.context_depths(ctx.node)
        previous = collect_previous(
            node_id,
            ctx.order,
            ctx.nodes,
            ctx.edges,
            max_depth=left,
            folder_limit_default=self.config.folder_context_limit,
            folder_limit_max=self.config.folder_context_limit_max,
        )
        next_nodes = collect_next_metadata(node_id, ctx.nodes, ctx.edges, max_depth=right)
        logger.info(
            f"   Context: {len(previous)} upstream, {len(next_nodes)} downstream "
            f"(depths {left}/{right})"
        )
        step = StepContext(
            project_id=ctx.project_id,
            node=ctx.node,
            previous_nodes=previous,
            next_nodes=next_nodes,
            edges=ctx.edges,
            nodes=ctx.nodes,
            project_settings=project_settings or {},
        )
        return step, build_input_fingerprint(ctx.node, previous, next_nodes)

    async def run_node(
        self,
        project_id: str,
        node_id: str,
        project_settings: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """
        Run one node and record the run.

        Raises:
            NotFound: the node does not exist (failed run recorded)
            CyclicGraph: the project graph has a cycle (failed run recorded)
            ExecutionFailed: the step failed after retries (failed run recorded)
        """
        run_id = uuid.uuid4().hex
        started_at = self.recorder.now()
        set_trace_context(run_id=run_id, project_id=project_id, node_id=node_id)
        try:
            logger.info(f"🚀 Running node {node_id}")
            try:
                ctx = await self.context_builder.build_context(project_id, node_id)
            except (NotFound, CyclicGraph) as e:
                logger.error(f"❌ Cannot run node {node_id}: {e}")
                await self.recorder.record_failure(
                    run_id, project_id, node_id, started_at, None, e, attempts=0
                )
                raise

            try:
                step, fingerprint = self._prepare_step(ctx, project_settings)
            except Exception as e:
                logger.error(f"❌ Cannot collect context for node {node_id}: {e}")
                await self.recorder.record_failure(
                    run_id, project_id, node_id, started_at, None, e, attempts=0
                )
                raise

            try:
                outcome = await self.retry.run(lambda: self.dispatcher.dispatch(step))
            except ExecutionFailed as e:
                logger.error(f"❌ Node {node_id} failed: {e}")
                await self.recorder.record_failure(
                    run_id,
                    project_id,
                    node_id,
                    started_at,
                    fingerprint,
                    e,
                    attempts=e.attempts,
                    errors=e.errors,
                    logs=e.timeline,
                )
                raise

            result: StepResult = outcome.value
            async with self.store.transaction(project_id):
                if result.persist_content and not ctx.node.is_generative:
                    await self.store.update_node_content(
                        project_id, node_id, result.content, result.content_type
                    )
                record = await self.recorder.record_success(
                    run_id, project_id, node_id, started_at, fingerprint, result, outcome
                )

            logger.info(
                f"✓ Node {node_id} completed in {outcome.attempts} attempt(s), "
                f"{len(result.created_nodes)} node(s) created"
            )
            return ExecutionResult(
                run_id=run_id,
                node_id=node_id,
                content=result.content,
                content_type=result.content_type,
                created_nodes=result.created_nodes,
                logs=result.logs,
                attempts=outcome.attempts,
                record=record,
            )
        finally:
            clear_trace_context()
