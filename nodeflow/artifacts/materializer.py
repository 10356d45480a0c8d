"""
Artifact materializer - persists extracted artifacts as graph nodes.

Each image or video artifact becomes a node linked from the source node
by an ``asset`` edge; all text artifacts are merged into one text node.
Before creating anything the materializer indexes the nodes already
downstream of the attach point, so re-running the same job never
duplicates nodes:

1. an asset id already created in this call is skipped;
2. an asset id (``{job_id}_{index}``) already present downstream is skipped;
3. a content signature already present downstream is skipped;
4. a raw value equal to a downstream link field or content is skipped.

Only one materialization per job id is in flight at a time; concurrent
callers for the same job await the first one and get its result.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from nodeflow.artifacts.extractor import (
    Artifact,
    ArtifactExtractor,
    ArtifactKind,
    compute_asset_signature,
    is_data_uri,
    merge_texts,
    normalize_aggregated_text,
    unwrap_output_source,
)
from nodeflow.artifacts.snapshots import (
    CreatedNodeSnapshot,
    describe_counts,
    describe_plural,
    extract_node_meta_snapshot,
)
from nodeflow.graph.edge import ARTIFACT_EDGE_LABEL
from nodeflow.graph.node import Node, NodeType
from nodeflow.schemas.run import CreatedNodeSummary
from nodeflow.storage.assets import LocalAssetStorage
from nodeflow.storage.backend import GraphStore

logger = logging.getLogger(__name__)

IMAGE_SIGNATURE_KEYS = (
    "image_url",
    "original_url",
    "image_original",
    "original_image",
    "image_edited",
    "edited_image",
    "image_crop",
    "crop_image",
    "annotated_image",
    "image_data",
)
VIDEO_SIGNATURE_KEYS = ("video_url", "original_url", "video_data")
PREVIEW_LIMIT = 180
ASSET_OFFSET_X = 200
ASSET_SPACING_Y = 220

TITLE_PREFIX = {
    ArtifactKind.IMAGE: "Image",
    ArtifactKind.VIDEO: "Video",
    ArtifactKind.TEXT: "Text",
}


@dataclass
class MaterializationResult:
    created_nodes: list[CreatedNodeSummary] = field(default_factory=list)
    snapshots: list[CreatedNodeSnapshot] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    aggregated_text: str | None = None
    duplicates: int = 0


@dataclass
class _DedupIndex:
    """Signatures and asset ids already present downstream of the attach node."""

    signatures: set[str] = field(default_factory=set)
    asset_ids: set[str] = field(default_factory=set)
    downstream: list[Node] = field(default_factory=list)
    created_asset_ids: set[str] = field(default_factory=set)
    text_resolved: bool = False

    def register(self, kind: str, value: Any) -> None:
        if isinstance(value, str) and value.strip():
            self.signatures.add(f"{kind}:{value.strip()}")

    def register_signature(self, signature: str) -> None:
        self.signatures.add(f"signature:{signature}")

    def has(self, kind: str, raw_value: str, signature: str) -> bool:
        return (
            f"{kind}:{raw_value}" in self.signatures
            or f"signature:{signature}" in self.signatures
        )

    def matches_downstream(self, raw_value: str, signature: str) -> bool:
        for node in self.downstream:
            meta = node.metadata
            links = (meta.get("image_url"), meta.get("original_url"), meta.get("video_url"))
            if raw_value in links:
                return True
            if meta.get("source_asset_signature") == signature or node.content == raw_value:
                return True
        return False


def derive_asset_position(anchor: Node, index: int) -> tuple[float, float]:
    """Place the index-th asset right of the anchor, stacked downward."""
    if anchor.is_container:
        return (0.0, 0.0)
    bbox = anchor.ui.bbox
    return (round(bbox.x2 + ASSET_OFFSET_X), round(bbox.y1 + index * ASSET_SPACING_Y))


def build_title(artifact: Artifact, offset: int) -> str:
    if artifact.title and artifact.title.strip():
        return artifact.title.strip()
    return f"{TITLE_PREFIX[artifact.kind]} {offset + 1}"


class ArtifactMaterializer:
    """Creates nodes for artifacts of one generative job."""

    def __init__(
        self,
        store: GraphStore,
        assets: LocalAssetStorage | None = None,
        extractor: ArtifactExtractor | None = None,
    ):
        self.store = store
        self.assets = assets
        self.extractor = extractor or ArtifactExtractor()
        self._in_flight: dict[str, asyncio.Task[MaterializationResult]] = {}

    # -------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------

    async def materialize_outputs(
        self,
        project_id: str,
        source_node: Node,
        raw_outputs: list[Any],
        job_id: str | None = None,
        job_url: str | None = None,
        provider: str | None = None,
        attach_to: Node | None = None,
    ) -> MaterializationResult:
        """Extract artifacts from every output source, then materialize them."""
        sources = []
        for output in raw_outputs:
            value = unwrap_output_source(output)
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            sources.append(value.strip() if isinstance(value, str) else value)

        artifacts: list[Artifact] = []
        duplicates = 0
        # The same asset reached through several sources is one artifact, not a duplicate
        seen_assets: set[tuple[str, str]] = set()
        for source in sources:
            extracted = self.extractor.extract(source)
            duplicates += extracted.duplicates
            for artifact in extracted.artifacts:
                if artifact.kind != ArtifactKind.TEXT:
                    key = (artifact.kind, artifact.value.strip())
                    if key in seen_assets:
                        continue
                    seen_assets.add(key)
                artifacts.append(artifact)

        if not artifacts:
            return MaterializationResult(
                logs=[f"Output did not contain artifacts (sources inspected: {len(sources)})."]
            )
        return await self.materialize(
            project_id,
            source_node,
            artifacts,
            job_id=job_id,
            job_url=job_url,
            provider=provider,
            attach_to=attach_to,
            duplicates_suppressed=duplicates,
        )

    async def materialize(
        self,
        project_id: str,
        source_node: Node,
        artifacts: list[Artifact],
        job_id: str | None = None,
        job_url: str | None = None,
        provider: str | None = None,
        attach_to: Node | None = None,
        duplicates_suppressed: int = 0,
    ) -> MaterializationResult:
        """
        Create nodes for ``artifacts`` under ``attach_to`` (default: the source node).

        Concurrent calls sharing a ``job_id`` run once; later callers await
        the first call's result.
        """
        if not job_id:
            return await self._materialize(
                project_id, source_node, artifacts, None, job_url, provider, attach_to,
                duplicates_suppressed,
            )

        existing = self._in_flight.get(job_id)
        if existing is not None:
            logger.info(f"Materialization for job {job_id} already running, awaiting it")
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(
            self._materialize(
                project_id, source_node, artifacts, job_id, job_url, provider, attach_to,
                duplicates_suppressed,
            )
        )
        self._in_flight[job_id] = task
        try:
            return await task
        finally:
            if self._in_flight.get(job_id) is task:
                del self._in_flight[job_id]

    # -------------------------------------------------------------------
    # Core
    # -------------------------------------------------------------------

    async def _build_index(
        self, project_id: str, anchor: Node, job_id: str | None, provider: str | None
    ) -> _DedupIndex:
        edges = await self.store.list_edges(project_id)
        target_ids = {e.to_node for e in edges if e.from_node == anchor.id}
        nodes = await self.store.list_nodes(project_id)

        index = _DedupIndex(downstream=[n for n in nodes if n.id in target_ids])
        for node in index.downstream:
            meta = node.metadata
            prior_job = meta.get("source_prediction_id")
            if job_id and isinstance(prior_job, str) and prior_job != job_id:
                continue
            prior_provider = meta.get("source_provider")
            if provider and isinstance(prior_provider, str) and prior_provider != provider:
                continue
            if isinstance(meta.get("asset_id"), str):
                index.asset_ids.add(meta["asset_id"])
            signature = meta.get("source_asset_signature")
            if isinstance(signature, str) and signature.strip():
                index.register_signature(signature.strip())
            if node.type == NodeType.IMAGE:
                for key in IMAGE_SIGNATURE_KEYS:
                    index.register("image", meta.get(key))
                index.register("image", node.content)
            elif node.type == NodeType.VIDEO:
                for key in VIDEO_SIGNATURE_KEYS:
                    index.register("video", meta.get(key))
                index.register("video", node.content)
            elif node.type == NodeType.TEXT:
                index.register("text", node.content)
        return index

    async def _materialize(
        self,
        project_id: str,
        source_node: Node,
        artifacts: list[Artifact],
        job_id: str | None,
        job_url: str | None,
        provider: str | None,
        attach_to: Node | None,
        duplicates_suppressed: int,
    ) -> MaterializationResult:
        anchor = attach_to or source_node
        result = MaterializationResult(duplicates=duplicates_suppressed)
        logs = result.logs
        timestamp = datetime.now(UTC).isoformat()

        texts = [a for a in artifacts if a.kind == ArtifactKind.TEXT]
        assets = [a for a in artifacts if a.kind != ArtifactKind.TEXT]

        aggregated = merge_texts(texts)
        if aggregated:
            aggregated = normalize_aggregated_text(aggregated) or aggregated.rstrip()
            if not aggregated.strip():
                aggregated = None
        if aggregated:
            logs.append(f"Aggregated {len(texts)} text segment(s) into one text block.")
        result.aggregated_text = aggregated

        index = await self._build_index(project_id, anchor, job_id, provider)

        def base_meta(kind: str, asset_id: str, raw_value: str, signature: str) -> dict[str, Any]:
            return {
                "asset_id": asset_id,
                "source_prediction_id": job_id,
                "source_prediction_url": job_url,
                "source_provider": provider,
                "source_node_id": source_node.id,
                "source_node_title": source_node.title,
                "source_artifact_kind": kind,
                "artifact_value_preview": raw_value[:PREVIEW_LIMIT],
                "asset_index": len(result.created_nodes),
                "created_at": timestamp,
                "source_asset_signature": signature,
            }

        for position_index, artifact in enumerate(assets):
            raw_value = artifact.value.strip()
            if not raw_value:
                logs.append("Skipped empty artifact.")
                continue

            if job_id:
                asset_id = f"{job_id}_{position_index}"
            else:
                asset_id = f"{source_node.id}_{position_index}_{int(time.time() * 1000)}"
            signature = compute_asset_signature(raw_value)

            reason = None
            if asset_id in index.created_asset_ids:
                reason = "duplicate in this run"
            elif asset_id in index.asset_ids:
                reason = "duplicate by asset id"
            elif index.has(artifact.kind, raw_value, signature):
                reason = "duplicate signature"
            elif index.matches_downstream(raw_value, signature):
                reason = "duplicate by URL"
            if reason:
                result.duplicates += 1
                logs.append(f"Skipping {artifact.kind} artifact ({reason}).")
                continue

            index.register(artifact.kind, raw_value)
            index.register_signature(signature)
            meta = base_meta(artifact.kind, asset_id, raw_value, signature)
            if artifact.kind == ArtifactKind.IMAGE:
                content_type = await self._image_meta(project_id, raw_value, meta)
            else:
                content_type = await self._video_meta(project_id, raw_value, meta, logs)

            await self._create(
                project_id, anchor, result, artifact, meta, content="", content_type=content_type,
                raw_value=raw_value,
            )
            index.created_asset_ids.add(asset_id)

        await self._maybe_create_text_node(
            project_id, source_node, anchor, result, index, base_meta, job_id
        )

        if result.duplicates > 0:
            logs.append(f"Skipped {result.duplicates} artifact(s) as duplicates.")
        created_count = len(result.created_nodes)
        if created_count:
            breakdown = describe_counts([n.type for n in result.created_nodes])
            logs.append(
                f"Created {created_count} {describe_plural('node', created_count)} ({breakdown})."
            )
        elif result.duplicates == 0:
            logs.append("No new artifacts found.")
        if job_id:
            logs.append(f"Job id: {job_id}")
        if job_url:
            logs.append(f"Job url: {job_url}")
        outputs = list(dict.fromkeys(a.value for a in assets))
        if outputs:
            logs.append(f"Outputs: {', '.join(outputs)}")

        # Second checkpoint; a no-op when the first one created the node
        await self._maybe_create_text_node(
            project_id, source_node, anchor, result, index, base_meta, job_id
        )

        for line in logs:
            logger.info(line)
        return result

    async def _maybe_create_text_node(
        self,
        project_id: str,
        source_node: Node,
        anchor: Node,
        result: MaterializationResult,
        index: _DedupIndex,
        base_meta: Any,
        job_id: str | None,
    ) -> None:
        text = result.aggregated_text
        if not text or index.text_resolved:
            return
        index.text_resolved = True
        signature = compute_asset_signature(text)
        if index.has("text", text, signature):
            result.logs.append("Text segments match existing ones, no new text node created.")
            return
        if job_id:
            asset_id = f"{job_id}_text"
        else:
            asset_id = f"{source_node.id}_text_{int(time.time() * 1000)}"
        if asset_id in index.created_asset_ids or asset_id in index.asset_ids:
            result.logs.append("Text artifact already created, skipping.")
            return

        meta = base_meta("text", asset_id, text, signature)
        meta["text_origin"] = "generative_artifact"
        await self._create(
            project_id, anchor, result, Artifact(kind=ArtifactKind.TEXT, value=text), meta,
            content=text, content_type="text/plain", raw_value=text,
        )
        index.created_asset_ids.add(asset_id)
        index.register("text", text)
        index.register_signature(signature)

    async def _create(
        self,
        project_id: str,
        anchor: Node,
        result: MaterializationResult,
        artifact: Artifact,
        meta: dict[str, Any],
        content: str,
        content_type: str | None,
        raw_value: str,
    ) -> None:
        offset = len(result.created_nodes)
        title = build_title(artifact, offset)
        position = derive_asset_position(anchor, offset)
        meta["ui_position"] = {"x": position[0], "y": position[1]}

        async with self.store.transaction(project_id):
            node = await self.store.create_node(
                project_id,
                type=artifact.kind.value,
                title=title,
                content=content,
                content_type=content_type,
                metadata=meta,
                position=position,
            )
            await self.store.add_edge(project_id, anchor.id, node.id, label=ARTIFACT_EDGE_LABEL)

        result.created_nodes.append(
            CreatedNodeSummary(node_id=node.id, type=node.type, title=title)
        )
        result.snapshots.append(
            CreatedNodeSnapshot(
                node_id=node.id,
                type=node.type,
                title=title,
                content_type=content_type,
                ui_position={"x": position[0], "y": position[1]},
                meta=extract_node_meta_snapshot(meta, artifact.kind, raw_value),
            )
        )
        result.logs.append(f'Created {artifact.kind} node "{title}" ({node.id}).')

    # -------------------------------------------------------------------
    # Per-kind metadata
    # -------------------------------------------------------------------

    async def _image_meta(self, project_id: str, raw_value: str, meta: dict[str, Any]) -> str:
        data_uri = is_data_uri(raw_value)
        if data_uri and self.assets is not None:
            saved = await self.assets.save_asset(project_id, raw_value, subdir="images")
            meta["image_path"] = saved.relative_path
            meta["image_url"] = saved.public_url
            meta["display_mode"] = "url"
        elif data_uri:
            meta["image_data"] = raw_value
        else:
            meta["image_url"] = raw_value
        link = meta.get("image_url") or raw_value
        meta["image_original"] = link
        meta["original_image"] = link
        return "image/data-uri" if data_uri else "image/url"

    async def _video_meta(
        self, project_id: str, raw_value: str, meta: dict[str, Any], logs: list[str]
    ) -> str:
        meta["controls"] = True
        if not is_data_uri(raw_value):
            meta["video_url"] = raw_value
            meta["display_mode"] = "url"
            return "video/url"

        meta["display_mode"] = "upload"
        if self.assets is None:
            meta["video_data"] = raw_value
            return "video/data-uri"
        try:
            saved = await self.assets.save_asset(project_id, raw_value, subdir="videos")
        except (ValueError, OSError) as e:
            logs.append(f"Could not store video asset, keeping inline data ({e}).")
            meta["video_data"] = raw_value
            return "video/data-uri"
        meta.update(
            video_file=saved.filename,
            video_path=saved.relative_path,
            video_url=saved.public_url,
            asset_mime_type=saved.mime_type,
            file_size=saved.size,
        )
        return "video/data-uri"
