"""Shared fixtures for nodeflow tests."""

import pytest

from nodeflow.config import EngineConfig
from nodeflow.graph.node import Node
from nodeflow.runtime.run_log_store import InMemoryRunLogStore
from nodeflow.storage.backend import InMemoryGraphStore

PROJECT = "p1"


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point NODEFLOW_HOME at an empty directory so user config never leaks in."""
    monkeypatch.setenv("NODEFLOW_HOME", str(tmp_path / "home"))


@pytest.fixture
def store():
    return InMemoryGraphStore()


@pytest.fixture
def run_log():
    return InMemoryRunLogStore()


@pytest.fixture
def config(tmp_path):
    return EngineConfig(backoff_ms=(0, 1000, 2000), storage_root=tmp_path / "projects")


@pytest.fixture
def make_node():
    def _make(node_id, type="text", **kwargs):
        return Node(id=node_id, project_id=PROJECT, type=type, title=node_id.upper(), **kwargs)

    return _make


@pytest.fixture
def seed(store):
    """Add nodes and ``(from, to[, label])`` edges to the store."""

    async def _seed(*nodes, edges=()):
        for node in nodes:
            await store.add_node(node)
        for edge in edges:
            await store.add_edge(PROJECT, *edge)
        return store

    return _seed


@pytest.fixture
def fast_sleep(monkeypatch):
    """Make retry backoff instant and record the requested delays (seconds)."""
    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("nodeflow.runtime.retry.asyncio.sleep", _sleep)
    return delays
