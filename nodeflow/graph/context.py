"""
Graph context - what a node sees when it runs.

``GraphContextBuilder.build_context`` loads the project graph, checks it
is acyclic and fixes a topological order. The module functions then
derive the target node's upstream context (``collect_previous``), its
downstream metadata (``collect_next_metadata``) and the files attached
through media ports (``collect_files``).
"""

import logging
import math
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from nodeflow.errors import CyclicGraph, NotFound
from nodeflow.graph.edge import Edge
from nodeflow.graph.node import Node, NodeType

logger = logging.getLogger(__name__)

SHORT_DESCRIPTION_LIMIT = 200
DEFAULT_FOLDER_CONTEXT_LIMIT = 6
MAX_FOLDER_CONTEXT_LIMIT = 24
MAX_CONTEXT_DEPTH = 10


@dataclass
class ExecutionContext:
    """A project graph snapshot fixed for one run."""

    project_id: str
    node: Node
    nodes: dict[str, Node]
    edges: list[Edge]
    order: list[str] = field(default_factory=list)


class NextNodeMetadata(BaseModel):
    """Summary of a downstream node handed to generative calls."""

    node_id: str
    type: str = NodeType.TEXT
    title: str = ""
    short_description: str = ""
    connection_labels: list[str] = Field(default_factory=list)


class CollectedFile(BaseModel):
    """An upstream file delivered to a generative call through a media port."""

    name: str
    type: str
    content: str
    source_node_id: str


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def topological_sort(node_ids: Iterable[str], edges: Iterable[Edge]) -> tuple[list[str], bool]:
    """
    Kahn's algorithm with a FIFO frontier.

    Edges with an endpoint outside ``node_ids`` are ignored.

    Returns:
        (order, has_cycle) where has_cycle is True when some node never
        reached indegree zero.
    """
    ids = list(dict.fromkeys(node_ids))
    known = set(ids)
    indegree = {node_id: 0 for node_id in ids}
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in ids}

    for edge in edges:
        if edge.from_node not in known or edge.to_node not in known:
            logger.debug(f"Ignoring dangling edge {edge.from_node} -> {edge.to_node}")
            continue
        adjacency[edge.from_node].append(edge.to_node)
        indegree[edge.to_node] += 1

    queue = deque(node_id for node_id in ids if indegree[node_id] == 0)
    order: list[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for child in adjacency[current]:
            indegree[child] -= 1
            if indegree[child] == 0:
                queue.append(child)

    return order, len(order) != len(ids)


def normalize_context_depth(raw: Any, fallback: int, maximum: int = MAX_CONTEXT_DEPTH) -> int:
    """Coerce a configured depth (int or numeric string) into ``[0, maximum]``."""
    value: float | None = None
    if isinstance(raw, bool):
        value = None
    elif isinstance(raw, int | float):
        value = float(raw)
    elif isinstance(raw, str) and raw.strip():
        try:
            value = float(raw.strip())
        except ValueError:
            value = None
    if value is None or value != value or value in (float("inf"), float("-inf")):
        return fallback
    return max(0, min(maximum, int(value)))


def folder_context_limit(
    node: Node,
    default: int = DEFAULT_FOLDER_CONTEXT_LIMIT,
    maximum: int = MAX_FOLDER_CONTEXT_LIMIT,
) -> int:
    """How many of a container's most recent members count as context."""
    raw = node.container_settings().folder_context_limit
    if isinstance(raw, bool) or not isinstance(raw, int | float | str):
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value):
        return default
    limit = int(value)
    if limit < 1:
        return default
    return min(limit, maximum)


# ---------------------------------------------------------------------------
# Upstream / downstream traversal
# ---------------------------------------------------------------------------


def _reachable(
    start: str, adjacency: dict[str, list[str]], max_depth: int | None
) -> dict[str, int]:
    """Breadth-first reachability, returning each node's hop distance."""
    depths: dict[str, int] = {}
    frontier = deque([(start, 0)])
    while frontier:
        current, depth = frontier.popleft()
        next_depth = depth + 1
        if max_depth is not None and next_depth > max_depth:
            continue
        for neighbour in adjacency.get(current, []):
            if neighbour == start or neighbour in depths:
                continue
            depths[neighbour] = next_depth
            frontier.append((neighbour, next_depth))
    return depths


def collect_previous(
    node_id: str,
    order: list[str],
    nodes: dict[str, Node],
    edges: list[Edge],
    max_depth: int | None = None,
    folder_limit_default: int = DEFAULT_FOLDER_CONTEXT_LIMIT,
    folder_limit_max: int = MAX_FOLDER_CONTEXT_LIMIT,
) -> list[Node]:
    """
    Return the nodes upstream of ``node_id`` within ``max_depth`` hops.

    Results follow topological order (ties by depth). Each container in
    the result is followed by its most recent members.
    ``max_depth=None`` means unbounded; ``0`` means no context.
    """
    if max_depth is not None and max_depth <= 0:
        return []

    reverse: dict[str, list[str]] = {}
    for edge in edges:
        reverse.setdefault(edge.to_node, []).append(edge.from_node)

    depths = _reachable(node_id, reverse, max_depth)
    position = {nid: index for index, nid in enumerate(order)}
    upstream = sorted(
        (nid for nid in depths if nid in nodes),
        key=lambda nid: (position.get(nid, len(order)), depths[nid]),
    )

    result: list[Node] = []
    included: set[str] = set()
    for nid in upstream:
        if nid in included:
            continue
        node = nodes[nid]
        result.append(node)
        included.add(nid)
        if not node.is_container:
            continue
        limit = folder_context_limit(node, folder_limit_default, folder_limit_max)
        for member_id in node.container_settings().member_ids()[-limit:]:
            if member_id in included or member_id == node_id or member_id not in nodes:
                continue
            result.append(nodes[member_id])
            included.add(member_id)
    return result


def _short_description(node: Node) -> str:
    text = node.meta_str("short_description") or node.content or node.title or ""
    return text[:SHORT_DESCRIPTION_LIMIT]


def collect_next_metadata(
    node_id: str,
    nodes: dict[str, Node],
    edges: list[Edge],
    max_depth: int | None = None,
) -> list[NextNodeMetadata]:
    """Summarise nodes downstream of ``node_id`` within ``max_depth`` hops."""
    if max_depth is not None and max_depth <= 0:
        return []

    forward: dict[str, list[str]] = {}
    direct_labels: dict[str, list[str]] = {}
    for edge in edges:
        forward.setdefault(edge.from_node, []).append(edge.to_node)
        if edge.from_node == node_id and edge.label:
            direct_labels.setdefault(edge.to_node, []).append(edge.label)

    result: list[NextNodeMetadata] = []
    for nid, depth in _reachable(node_id, forward, max_depth).items():
        node = nodes.get(nid)
        if node is None:
            continue
        result.append(
            NextNodeMetadata(
                node_id=nid,
                type=node.type or NodeType.TEXT,
                title=node.title,
                short_description=_short_description(node),
                connection_labels=direct_labels.get(nid, []) if depth == 1 else [],
            )
        )
    return result


# ---------------------------------------------------------------------------
# Media port files
# ---------------------------------------------------------------------------


def _image_reference(node: Node) -> str | None:
    url = node.meta_str("image_url")
    if not url and node.meta_str("image_path"):
        url = f"/uploads/{node.project_id}/{node.meta_str('image_path')}".replace("\\", "/")
    if not url:
        for key in ("original_image", "image_original", "image_edited", "edited_image"):
            url = node.meta_str(key)
            if url:
                break
    return url


def collect_files(node_id: str, previous: list[Node], edges: list[Edge]) -> list[CollectedFile]:
    """Files contributed by upstream nodes wired into a media port of ``node_id``."""
    ports_by_source: dict[str, list[str]] = {}
    for edge in edges:
        if edge.to_node == node_id and edge.is_media_link:
            ports_by_source.setdefault(edge.from_node, []).append(edge.target_handle)

    files: list[CollectedFile] = []
    for node in previous:
        ports = ports_by_source.get(node.id)
        if not ports:
            continue
        port = ports[0]

        def add(file_type: str, content: str, source: Node = node, name: str = port) -> None:
            files.append(
                CollectedFile(name=name, type=file_type, content=content, source_node_id=source.id)
            )

        if node.type == NodeType.FILE and node.content:
            add(node.content_type or "text/plain", node.content)
        elif node.type == NodeType.IMAGE:
            url = _image_reference(node)
            if url:
                add("image/base64" if url.startswith("data:") else "image/url", url)
            image_data = node.meta_str("image_data")
            if image_data:
                add("image/base64", image_data)
        elif node.type == NodeType.TEXT and node.content:
            content_type = node.content_type or "text/plain"
            if content_type == "text/markdown" or len(node.content) > 100:
                add(content_type, node.content)
        elif node.type == NodeType.HTML and node.content:
            add("text/html", node.content)

    if files:
        summary = ", ".join(f"{f.name} ({f.type})" for f in files)
        logger.info(f"Collected {len(files)} file(s) from media ports: {summary}")
    return files


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class GraphContextBuilder:
    """Loads a project graph and fixes the order for one run."""

    def __init__(self, store: Any):
        self.store = store

    async def build_context(self, project_id: str, node_id: str) -> ExecutionContext:
        """
        Raises:
            NotFound: the node is not part of the project
            CyclicGraph: the project's edges contain a cycle
        """
        nodes = {node.id: node for node in await self.store.list_nodes(project_id)}
        edges = await self.store.list_edges(project_id)
        node = nodes.get(node_id)
        if node is None:
            raise NotFound(node_id, project_id)

        order, has_cycle = topological_sort(nodes.keys(), edges)
        if has_cycle:
            raise CyclicGraph(project_id)

        return ExecutionContext(
            project_id=project_id, node=node, nodes=nodes, edges=edges, order=order
        )
