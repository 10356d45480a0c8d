"""
Graph persistence interface and the in-memory backend.

The engine only needs a handful of operations: read nodes and edges of a
project, create nodes, add edges, patch metadata, overwrite content, and
group several writes into one all-or-nothing transaction.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from nodeflow.errors import NotFound
from nodeflow.graph.edge import Edge
from nodeflow.graph.node import BoundingBox, Node, NodeUi

DEFAULT_NODE_SIZE = (240.0, 160.0)

# (store id, project id) pairs whose transaction the current task holds
_open_transactions: ContextVar[frozenset[tuple[int, str]]] = ContextVar(
    "nodeflow_open_transactions", default=frozenset()
)


class GraphStore(ABC):
    """Abstract project graph storage."""

    @abstractmethod
    async def get_node(self, project_id: str, node_id: str) -> Node | None:
        pass

    @abstractmethod
    async def list_nodes(self, project_id: str) -> list[Node]:
        pass

    @abstractmethod
    async def list_edges(self, project_id: str) -> list[Edge]:
        pass

    @abstractmethod
    async def create_node(
        self,
        project_id: str,
        *,
        type: str,
        title: str,
        content: str | None = None,
        content_type: str | None = None,
        metadata: dict[str, Any] | None = None,
        position: tuple[float, float] | None = None,
        config: dict[str, Any] | None = None,
    ) -> Node:
        pass

    @abstractmethod
    async def add_edge(
        self,
        project_id: str,
        from_node: str,
        to_node: str,
        label: str | None = None,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> Edge:
        pass

    @abstractmethod
    async def update_node_metadata(
        self, project_id: str, node_id: str, patch: dict[str, Any]
    ) -> Node:
        """Shallow-merge ``patch`` into the node's metadata."""

    @abstractmethod
    async def update_node_content(
        self, project_id: str, node_id: str, content: str | None, content_type: str | None = None
    ) -> Node:
        pass

    @abstractmethod
    def transaction(self, project_id: str) -> Any:
        """Async context manager making the enclosed writes all-or-nothing."""


@dataclass
class ProjectGraph:
    nodes: dict[str, Node] = field(default_factory=dict)
    edges: list[Edge] = field(default_factory=list)

    def copy(self) -> "ProjectGraph":
        return ProjectGraph(
            nodes={k: v.model_copy(deep=True) for k, v in self.nodes.items()},
            edges=[e.model_copy(deep=True) for e in self.edges],
        )


class InMemoryGraphStore(GraphStore):
    """
    Dict-backed graph store.

    Transactions take a per-project lock, snapshot the project graph and
    restore the snapshot when the block raises. Writes from tasks outside
    the transaction wait for the lock, so a rollback only ever undoes the
    owner's writes. Subclasses persist through ``_load`` and ``_commit``;
    writes made inside a transaction are committed once when it exits
    cleanly.
    """

    def __init__(self) -> None:
        self._projects: dict[str, ProjectGraph] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------
    # Persistence hooks
    # -------------------------------------------------------------------

    async def _load(self, project_id: str) -> ProjectGraph:
        return ProjectGraph()

    async def _commit(self, project_id: str) -> None:
        pass

    async def _project(self, project_id: str) -> ProjectGraph:
        graph = self._projects.get(project_id)
        if graph is None:
            graph = await self._load(project_id)
            self._projects[project_id] = graph
        return graph

    def _lock(self, project_id: str) -> asyncio.Lock:
        return self._locks.setdefault(project_id, asyncio.Lock())

    def _owns_transaction(self, project_id: str) -> bool:
        return (id(self), project_id) in _open_transactions.get()

    @asynccontextmanager
    async def _writing(self, project_id: str) -> AsyncIterator[ProjectGraph]:
        """Join the caller's transaction, or write under the project lock and commit."""
        if self._owns_transaction(project_id):
            yield await self._project(project_id)
            return
        async with self._lock(project_id):
            yield await self._project(project_id)
            await self._commit(project_id)

    # -------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------

    async def add_node(self, node: Node) -> Node:
        """Insert a fully-formed node (used to seed graphs)."""
        async with self._writing(node.project_id) as graph:
            graph.nodes[node.id] = node
        return node

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    async def get_node(self, project_id: str, node_id: str) -> Node | None:
        graph = await self._project(project_id)
        return graph.nodes.get(node_id)

    async def list_nodes(self, project_id: str) -> list[Node]:
        graph = await self._project(project_id)
        return list(graph.nodes.values())

    async def list_edges(self, project_id: str) -> list[Edge]:
        graph = await self._project(project_id)
        return list(graph.edges)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    async def create_node(
        self,
        project_id: str,
        *,
        type: str,
        title: str,
        content: str | None = None,
        content_type: str | None = None,
        metadata: dict[str, Any] | None = None,
        position: tuple[float, float] | None = None,
        config: dict[str, Any] | None = None,
    ) -> Node:
        x, y = position or (0.0, 0.0)
        width, height = DEFAULT_NODE_SIZE
        node = Node(
            id=uuid.uuid4().hex,
            project_id=project_id,
            type=type,
            title=title,
            content=content,
            content_type=content_type,
            metadata=dict(metadata or {}),
            config=dict(config or {}),
            ui=NodeUi(bbox=BoundingBox(x1=x, y1=y, x2=x + width, y2=y + height)),
        )
        async with self._writing(project_id) as graph:
            graph.nodes[node.id] = node
        return node

    async def add_edge(
        self,
        project_id: str,
        from_node: str,
        to_node: str,
        label: str | None = None,
        source_handle: str | None = None,
        target_handle: str | None = None,
    ) -> Edge:
        async with self._writing(project_id) as graph:
            source = graph.nodes.get(from_node)
            target = graph.nodes.get(to_node)
            if source is None:
                raise NotFound(from_node, project_id)
            if target is None:
                raise NotFound(to_node, project_id)

            edge = Edge(
                id=uuid.uuid4().hex,
                from_node=from_node,
                to_node=to_node,
                label=label,
                source_handle=source_handle,
                target_handle=target_handle,
            )
            graph.edges.append(edge)
            if to_node not in source.connections.outgoing:
                source.connections.outgoing.append(to_node)
            if from_node not in target.connections.incoming:
                target.connections.incoming.append(from_node)
        return edge

    async def update_node_metadata(
        self, project_id: str, node_id: str, patch: dict[str, Any]
    ) -> Node:
        async with self._writing(project_id) as graph:
            node = _require(graph, project_id, node_id)
            node.metadata = {**node.metadata, **patch}
            node.updated_at = datetime.now()
        return node

    async def update_node_content(
        self, project_id: str, node_id: str, content: str | None, content_type: str | None = None
    ) -> Node:
        async with self._writing(project_id) as graph:
            node = _require(graph, project_id, node_id)
            node.content = content
            if content_type is not None:
                node.content_type = content_type
            node.updated_at = datetime.now()
        return node

    # -------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, project_id: str) -> AsyncIterator["InMemoryGraphStore"]:
        if self._owns_transaction(project_id):
            # Nested blocks join the outer transaction
            yield self
            return
        async with self._lock(project_id):
            snapshot = (await self._project(project_id)).copy()
            token = _open_transactions.set(
                _open_transactions.get() | {(id(self), project_id)}
            )
            try:
                yield self
            except BaseException:
                self._projects[project_id] = snapshot
                raise
            finally:
                _open_transactions.reset(token)
            await self._commit(project_id)


def _require(graph: ProjectGraph, project_id: str, node_id: str) -> Node:
    node = graph.nodes.get(node_id)
    if node is None:
        raise NotFound(node_id, project_id)
    return node
