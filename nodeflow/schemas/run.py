"""
Run Schema - one recorded execution of a single node.

A RunRecord is written for every call to ``NodeExecutor.run_node``,
successful or not. ``input_hash`` fingerprints what the node saw
(itself, its upstream context, its downstream metadata and the engine
version); ``output_hash`` fingerprints what it produced (or the error).
"""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field


class RunStatus(StrEnum):
    """Status of a node run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


class CreatedNodeSummary(BaseModel):
    node_id: str
    type: str
    title: str


class RunLogPayload(BaseModel):
    """
    Structured log stored with a run.

    Success payloads fill ``created_nodes``, ``timeline``, ``node_logs`` and
    ``metadata``; failure payloads fill ``errors`` and ``logs``.
    """

    status: RunStatus
    engine: str
    attempts: int = 1
    timeline: list[str] = Field(default_factory=list)
    node_logs: list[str] = Field(default_factory=list)
    created_nodes: list[CreatedNodeSummary] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    provider: str | None = None
    job_id: str | None = None
    job_payload: Any = None
    errors: list[dict[str, Any]] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class RunRecord(BaseModel):
    """An immutable record of one node run."""

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    project_id: str
    node_id: str
    started_at: datetime
    finished_at: datetime
    status: RunStatus
    input_hash: str
    output_hash: str
    logs: RunLogPayload

    model_config = {"extra": "allow"}

    @computed_field
    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)
