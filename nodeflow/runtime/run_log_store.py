"""Storage for node run records.

Records are append-only. The file store keeps one JSONL file per node so
concurrent runs of different nodes never touch the same file, and a crash
mid-write costs at most the last line.

Storage layout::

    {base_path}/
      {project_id}/
        runs/
          {node_id}.jsonl    # one RunRecord per line, appended per run
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from nodeflow.schemas.run import RunRecord
from nodeflow.storage.file_store import validate_key

logger = logging.getLogger(__name__)


class RunLogStore(ABC):
    """Append-only sink for RunRecords."""

    @abstractmethod
    async def append(self, record: RunRecord) -> None:
        pass

    @abstractmethod
    async def list_runs(self, project_id: str, node_id: str, limit: int = 20) -> list[RunRecord]:
        """Return the node's runs, newest first."""


class InMemoryRunLogStore(RunLogStore):
    def __init__(self) -> None:
        self.records: list[RunRecord] = []

    async def append(self, record: RunRecord) -> None:
        self.records.append(record)

    async def list_runs(self, project_id: str, node_id: str, limit: int = 20) -> list[RunRecord]:
        runs = [r for r in self.records if r.project_id == project_id and r.node_id == node_id]
        return _newest_first(runs)[:limit]


class FileRunLogStore(RunLogStore):
    """Persists run records as JSONL, one file per node."""

    def __init__(self, base_path: Path) -> None:
        self._base_path = Path(base_path)

    def _runs_file(self, project_id: str, node_id: str) -> Path:
        validate_key(project_id)
        validate_key(node_id)
        return self._base_path / project_id / "runs" / f"{node_id}.jsonl"

    async def append(self, record: RunRecord) -> None:
        """Append one JSONL line for the record."""
        path = self._runs_file(record.project_id, record.node_id)
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"

        def _append() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)

        await asyncio.to_thread(_append)

    async def list_runs(self, project_id: str, node_id: str, limit: int = 20) -> list[RunRecord]:
        path = self._runs_file(project_id, node_id)
        runs = await asyncio.to_thread(_read_jsonl_as_models, path, RunRecord)
        return _newest_first(runs)[:limit]


# -------------------------------------------------------------------
# Module-level helpers
# -------------------------------------------------------------------


def _newest_first(runs: list[RunRecord]) -> list[RunRecord]:
    # append order breaks ties between equal timestamps
    return sorted(reversed(runs), key=lambda r: r.started_at, reverse=True)


def _read_jsonl_as_models(path: Path, model_cls: type) -> list:
    """Parse a JSONL file into a list of Pydantic model instances.

    Skips blank lines and corrupt JSON lines (partial writes from crashes).
    """
    results = []
    if not path.exists():
        return results
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    # computed fields are re-derived on load
                    data.pop("duration_ms", None)
                    results.append(model_cls(**data))
                except (json.JSONDecodeError, ValueError, TypeError) as e:
                    logger.warning("Skipping corrupt JSONL line in %s: %s", path, e)
                    continue
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
    return results
