"""Schema definitions for run records."""

from nodeflow.schemas.run import RunLogPayload, RunRecord, RunStatus

__all__ = ["RunRecord", "RunStatus", "RunLogPayload"]
