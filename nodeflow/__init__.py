"""
Nodeflow - execution engine for visual node graphs.

Runs a single node of a project graph: gathers upstream and downstream
context, dispatches to the handler registered for the node's type, turns
structured generative output into new graph nodes, and records every run.
"""

__version__ = "0.1.0"

from nodeflow.config import EngineConfig
from nodeflow.errors import (
    CyclicGraph,
    ExecutionFailed,
    NodeFlowError,
    NotFound,
    ProviderError,
    SandboxPolicyViolation,
    SchemaValidationError,
    ScriptExecutionError,
)
from nodeflow.graph.executor import ExecutionResult, NodeExecutor

__all__ = [
    "__version__",
    "EngineConfig",
    "NodeExecutor",
    "ExecutionResult",
    "NodeFlowError",
    "NotFound",
    "CyclicGraph",
    "SchemaValidationError",
    "SandboxPolicyViolation",
    "ScriptExecutionError",
    "ProviderError",
    "ExecutionFailed",
]
