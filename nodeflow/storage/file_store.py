"""
File-based graph store.

Storage layout::

    {base_path}/
      {project_id}/
        graph.json       # {"nodes": [...], "edges": [...]}

The whole project graph is cached in memory after the first read and
rewritten atomically (temp file, then rename) after each write, or once
per transaction.
"""

import asyncio
import json
import logging
from pathlib import Path

from nodeflow.graph.edge import Edge
from nodeflow.graph.node import Node
from nodeflow.storage.backend import InMemoryGraphStore, ProjectGraph

logger = logging.getLogger(__name__)


def validate_key(key: str) -> None:
    """
    Validate a storage key to prevent path traversal.

    Raises:
        ValueError: If key is empty or contains path separators or traversal
    """
    if not key or key.strip() == "":
        raise ValueError("Key cannot be empty")
    if "/" in key or "\\" in key:
        raise ValueError(f"Invalid key format: path separators not allowed in '{key}'")
    if ".." in key or key.startswith("."):
        raise ValueError(f"Invalid key format: path traversal detected in '{key}'")
    if len(key) > 1 and key[1] == ":":
        raise ValueError(f"Invalid key format: absolute paths not allowed in '{key}'")
    if "\x00" in key:
        raise ValueError("Invalid key format: null bytes not allowed")


class FileGraphStore(InMemoryGraphStore):
    """Graph store persisting one JSON document per project."""

    def __init__(self, base_path: str | Path):
        super().__init__()
        self.base_path = Path(base_path)

    def _graph_path(self, project_id: str) -> Path:
        validate_key(project_id)
        return self.base_path / project_id / "graph.json"

    async def _load(self, project_id: str) -> ProjectGraph:
        path = self._graph_path(project_id)

        def _read() -> ProjectGraph:
            if not path.exists():
                return ProjectGraph()
            data = json.loads(path.read_text(encoding="utf-8"))
            nodes = [Node.model_validate(raw) for raw in data.get("nodes", [])]
            edges = [Edge.model_validate(raw) for raw in data.get("edges", [])]
            return ProjectGraph(nodes={n.id: n for n in nodes}, edges=edges)

        return await asyncio.to_thread(_read)

    async def _commit(self, project_id: str) -> None:
        graph = self._projects.get(project_id)
        if graph is None:
            return
        path = self._graph_path(project_id)
        content = json.dumps(
            {
                "nodes": [n.model_dump(mode="json") for n in graph.nodes.values()],
                "edges": [e.model_dump(mode="json") for e in graph.edges],
            },
            indent=2,
            ensure_ascii=False,
        )

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_text(content, encoding="utf-8")
            tmp.replace(path)

        await asyncio.to_thread(_write)
        logger.debug("Saved project graph %s (%d nodes)", project_id, len(graph.nodes))
