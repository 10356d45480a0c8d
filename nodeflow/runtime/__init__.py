"""Retry coordination, run recording and run log storage."""

from nodeflow.runtime.retry import RetryCoordinator, RetryOutcome
from nodeflow.runtime.run_log_store import FileRunLogStore, InMemoryRunLogStore, RunLogStore
from nodeflow.runtime.run_recorder import RunRecorder, build_input_fingerprint, hash_content

__all__ = [
    "RetryCoordinator",
    "RetryOutcome",
    "RunRecorder",
    "RunLogStore",
    "FileRunLogStore",
    "InMemoryRunLogStore",
    "build_input_fingerprint",
    "hash_content",
]
