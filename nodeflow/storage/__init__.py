"""Graph persistence, asset storage."""

from nodeflow.storage.assets import LocalAssetStorage, SavedAsset
from nodeflow.storage.backend import GraphStore, InMemoryGraphStore
from nodeflow.storage.file_store import FileGraphStore

__all__ = [
    "GraphStore",
    "InMemoryGraphStore",
    "FileGraphStore",
    "LocalAssetStorage",
    "SavedAsset",
]
