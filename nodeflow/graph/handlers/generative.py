"""
Generative handler - calls a provider and shapes its reply into the graph.

Response shapes (``config["ai"]``):

- ``response_type`` tree/mindmap: the reply is a JSON node tree, expanded
  below the node;
- ``output_type`` node: structured replies are materialized as artifact
  nodes, plain replies become one response text node;
- ``output_type`` mindmap: the reply is split on a delimiter into
  sibling text nodes;
- ``output_type`` folder: artifacts are materialized into a downstream
  container, created when missing;
- anything else: the reply passes through as the step content, with
  artifact materialization attempted when it looks structured.
"""

import json
import logging
from typing import Any

from nodeflow.artifacts.extractor import collect_output_candidates
from nodeflow.artifacts.materializer import (
    ArtifactMaterializer,
    MaterializationResult,
    derive_asset_position,
)
from nodeflow.artifacts.snapshots import describe_counts, pick_primary_link
from nodeflow.errors import ProviderError
from nodeflow.graph.context import collect_files
from nodeflow.graph.dispatcher import StepContext, StepResult
from nodeflow.graph.node import GenerativeSettings, Node, NodeType, ResponseShape
from nodeflow.graph.prompt import build_context_summary
from nodeflow.graph.schemas import TREE_SCHEMA
from nodeflow.graph.tree import TreeExpander, parse_tree_json
from nodeflow.llm.provider import GenerativeProvider, ProviderRequest, ProviderResponse
from nodeflow.schemas.run import CreatedNodeSummary
from nodeflow.storage.backend import GraphStore

logger = logging.getLogger(__name__)

RESPONSE_NODE_TITLE = "AI Agent Response"
CONTAINER_TITLE = "AI Results"
DEFAULT_MINDMAP_DELIMITER = "---"
CHUNK_TITLE_LIMIT = 60
NOTHING_CREATED = "Response processed"


def artifact_summary(created: list[CreatedNodeSummary]) -> str:
    """``"Created 2 artifacts: 1 image, 1 text."``"""
    noun = "artifact" if len(created) == 1 else "artifacts"
    return f"Created {len(created)} {noun}: {describe_counts([n.type for n in created])}."


def with_trailing(text: str | None, summary: str) -> str:
    text = (text or "").strip()
    return f"{text}\n\n{summary}" if text else summary


def parse_structured(output: str) -> Any:
    """JSON-decode ``output`` when it looks like an object or array."""
    trimmed = output.strip()
    if not trimmed or trimmed[0] not in "{[":
        return None
    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        return None


class GenerativeHandler:
    def __init__(
        self,
        store: GraphStore,
        providers: dict[str, GenerativeProvider],
        materializer: ArtifactMaterializer,
        expander: TreeExpander,
        default_provider: str = "litellm",
    ):
        self.store = store
        self.providers = providers
        self.materializer = materializer
        self.expander = expander
        self.default_provider = default_provider

    def _provider(self, settings: GenerativeSettings) -> GenerativeProvider:
        name = settings.provider or self.default_provider
        provider = self.providers.get(name)
        if provider is None:
            raise ProviderError(f"Unknown provider '{name}'", provider=name)
        return provider

    async def handle(self, step: StepContext) -> StepResult:
        node = step.node
        settings = node.generative_settings()
        shape = settings.shape
        provider = self._provider(settings)

        request = ProviderRequest(
            project_id=step.project_id,
            node=node,
            prompt=node.content or "",
            settings=settings,
            context=build_context_summary(step.previous_nodes, settings.context_mode),
            previous_nodes=step.previous_nodes,
            next_nodes=step.next_nodes,
            files=collect_files(node.id, step.previous_nodes, step.edges),
            edges=step.edges,
            response_schema=TREE_SCHEMA if shape == ResponseShape.TREE else None,
        )
        response = await provider.run(request)
        logs = [f"Provider {response.provider or getattr(provider, 'name', '')} responded"]
        logs.extend(response.logs)
        if response.request_payload:
            await self.store.update_node_metadata(
                step.project_id, node.id, {"last_request_payload": response.request_payload}
            )

        if shape == ResponseShape.TREE:
            result = await self._tree(step, settings, response)
        elif shape == ResponseShape.MINDMAP:
            result = await self._split(step, response)
        elif shape == ResponseShape.NODE:
            result = await self._single_node(step, response)
        elif shape == ResponseShape.CONTAINER:
            result = await self._container(step, response)
        else:
            result = await self._passthrough(step, response)

        result.logs[:0] = logs
        result.provider = response.provider or getattr(provider, "name", None)
        result.job_id = response.job_id
        result.job_payload = response.payload
        result.metadata.setdefault("response_shape", shape.value)
        if response.job_url:
            result.metadata["job_url"] = response.job_url
        result.persist_content = False
        return result

    # -------------------------------------------------------------------
    # Shapes
    # -------------------------------------------------------------------

    async def _tree(
        self, step: StepContext, settings: GenerativeSettings, response: ProviderResponse
    ) -> StepResult:
        document = parse_tree_json(response.output)
        schema = "MINDMAP_SCHEMA" if settings.response_type == "mindmap" else "TREE_SCHEMA"
        expansion = await self.expander.expand(step.project_id, step.node, document, schema)
        return StepResult(
            content=response.output,
            content_type="application/json",
            logs=expansion.logs,
            created_nodes=expansion.created_nodes,
        )

    async def _split(self, step: StepContext, response: ProviderResponse) -> StepResult:
        node = step.node
        delimiter = node.meta_str("mindmap_delimiter") or DEFAULT_MINDMAP_DELIMITER
        chunks = [chunk.strip() for chunk in response.output.split(delimiter) if chunk.strip()]
        created: list[CreatedNodeSummary] = []

        async with self.store.transaction(step.project_id):
            for index, chunk in enumerate(chunks):
                first_line = chunk.splitlines()[0].lstrip("# ").strip()
                title = first_line[:CHUNK_TITLE_LIMIT] or f"Part {index + 1}"
                child = await self.store.create_node(
                    step.project_id,
                    type=NodeType.TEXT,
                    title=title,
                    content=chunk,
                    content_type="text/markdown",
                    metadata={"source_node_id": node.id, "split_index": index},
                    position=derive_asset_position(node, index),
                )
                await self.store.add_edge(step.project_id, node.id, child.id)
                created.append(CreatedNodeSummary(node_id=child.id, type=child.type, title=title))

        return StepResult(
            content=response.output,
            content_type="text/markdown",
            logs=[f"Split response into {len(created)} node(s)"],
            created_nodes=created,
        )

    async def _single_node(self, step: StepContext, response: ProviderResponse) -> StepResult:
        parsed = parse_structured(response.output)
        if response.is_job or isinstance(parsed, dict | list):
            materialized = await self._materialize(step, response, parsed)
            content = materialized.aggregated_text or response.output
            return self._with_artifacts(content, materialized)

        node = step.node
        async with self.store.transaction(step.project_id):
            child = await self.store.create_node(
                step.project_id,
                type=NodeType.TEXT,
                title=RESPONSE_NODE_TITLE,
                content=response.output,
                content_type=response.content_type,
                metadata={"source_node_id": node.id, "source_provider": response.provider},
                position=derive_asset_position(node, 0),
            )
            await self.store.add_edge(step.project_id, node.id, child.id)
        return StepResult(
            content=response.output,
            content_type=response.content_type,
            logs=[f'Created node "{RESPONSE_NODE_TITLE}" with the response ({child.id})'],
            created_nodes=[
                CreatedNodeSummary(node_id=child.id, type=child.type, title=child.title)
            ],
        )

    async def _container(self, step: StepContext, response: ProviderResponse) -> StepResult:
        node = step.node
        logs: list[str] = []
        created: list[CreatedNodeSummary] = []
        folder = self._downstream_container(step)
        if folder is None:
            async with self.store.transaction(step.project_id):
                folder = await self.store.create_node(
                    step.project_id,
                    type=NodeType.FOLDER,
                    title=CONTAINER_TITLE,
                    metadata={"folder_children": [], "source_node_id": node.id},
                    position=derive_asset_position(node, 0),
                )
                await self.store.add_edge(step.project_id, node.id, folder.id)
            logs.append(f'Created container "{CONTAINER_TITLE}" ({folder.id})')
            created.append(
                CreatedNodeSummary(node_id=folder.id, type=folder.type, title=folder.title)
            )

        parsed = parse_structured(response.output)
        materialized = await self._materialize(step, response, parsed, attach_to=folder)
        if materialized.created_nodes:
            current = await self.store.get_node(step.project_id, folder.id) or folder
            members = current.container_settings().member_ids()
            members.extend(n.node_id for n in materialized.created_nodes)
            await self.store.update_node_metadata(
                step.project_id, folder.id, {"folder_children": members}
            )
            logs.append(f"Added {len(materialized.created_nodes)} member(s) to {folder.title}")

        created.extend(materialized.created_nodes)
        fallback = with_trailing(materialized.aggregated_text, NOTHING_CREATED)
        result = self._with_artifacts(fallback, materialized, created)
        result.logs[:0] = logs
        result.metadata["container_id"] = folder.id
        return result

    async def _passthrough(self, step: StepContext, response: ProviderResponse) -> StepResult:
        parsed = parse_structured(response.output)
        content = response.output
        if isinstance(parsed, dict) and isinstance(parsed.get("output"), str):
            content = parsed["output"]
        if not (response.is_job or isinstance(parsed, dict | list)):
            return StepResult(content=content, content_type=response.content_type)

        materialized = await self._materialize(step, response, parsed)
        if response.is_job and materialized.aggregated_text:
            content = materialized.aggregated_text
        return self._with_artifacts(content, materialized)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _downstream_container(self, step: StepContext) -> Node | None:
        for edge in step.edges:
            if edge.from_node != step.node.id:
                continue
            target = step.nodes.get(edge.to_node)
            if target is not None and target.is_container:
                return target
        return None

    async def _materialize(
        self,
        step: StepContext,
        response: ProviderResponse,
        parsed: Any,
        attach_to: Node | None = None,
    ) -> MaterializationResult:
        candidates = collect_output_candidates(response.output, parsed, response.raw_output)
        materialized = await self.materializer.materialize_outputs(
            step.project_id,
            step.node,
            candidates,
            job_id=response.job_id,
            job_url=response.job_url,
            provider=response.provider or None,
            attach_to=attach_to,
        )
        if materialized.snapshots:
            await self._record_on_source(step, response, materialized)
        return materialized

    async def _record_on_source(
        self, step: StepContext, response: ProviderResponse, materialized: MaterializationResult
    ) -> None:
        # Only the latest run's artifacts are kept on the source node
        patch: dict[str, Any] = {
            "created_nodes": [s.model_dump() for s in materialized.snapshots],
            "output_type": materialized.snapshots[0].type,
        }
        primary = next(
            (link for link in map(pick_primary_link, materialized.snapshots) if link), None
        )
        if primary:
            patch["provider_output"] = primary
        if response.job_id:
            patch["provider_job"] = {
                "id": response.job_id,
                "url": response.job_url,
                "provider": response.provider,
            }
        await self.store.update_node_metadata(step.project_id, step.node.id, patch)

    @staticmethod
    def _with_artifacts(
        fallback: str,
        materialized: MaterializationResult,
        created: list[CreatedNodeSummary] | None = None,
    ) -> StepResult:
        """Step content is the aggregated text plus a summary once anything was created."""
        created = list(materialized.created_nodes) if created is None else created
        logs = list(materialized.logs)
        content = fallback
        if created:
            summary = artifact_summary(created)
            logs.append(summary)
            content = with_trailing(materialized.aggregated_text, summary)
        return StepResult(
            content=content,
            content_type="text/plain",
            logs=logs,
            created_nodes=created,
        )
