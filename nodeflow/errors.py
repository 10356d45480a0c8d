"""Error taxonomy for node execution."""

from typing import Any


class NodeFlowError(Exception):
    """Base class for all engine errors."""


class NotFound(NodeFlowError):
    """A node id referenced by a run does not exist in the project."""

    def __init__(self, node_id: str, project_id: str | None = None):
        self.node_id = node_id
        self.project_id = project_id
        super().__init__(f"Node {node_id} not found")


class CyclicGraph(NodeFlowError):
    """The project's edge set contains a cycle."""

    def __init__(self, project_id: str | None = None):
        self.project_id = project_id
        super().__init__("Graph contains cycles. Execution aborted")


class SchemaValidationError(NodeFlowError):
    """A structured-output step produced data that does not match its schema."""

    def __init__(self, message: str, errors: list[str] | None = None, schema: str | None = None):
        self.errors = errors or []
        self.schema = schema
        super().__init__(message)


class SandboxPolicyViolation(NodeFlowError):
    """Script code was rejected by the static policy check."""

    def __init__(self, message: str, violations: list[str] | None = None):
        self.violations = violations or []
        super().__init__(message)


class ScriptExecutionError(NodeFlowError):
    """Script exited non-zero or was killed after the wall-clock limit."""

    def __init__(self, message: str, exit_code: int | None = None, stderr: str = ""):
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class ProviderError(NodeFlowError):
    """A generative backend call failed."""

    def __init__(self, message: str, provider: str | None = None, job_id: str | None = None):
        self.provider = provider
        self.job_id = job_id
        super().__init__(message)


class ExecutionFailed(NodeFlowError):
    """A node step failed after the retry coordinator gave up."""

    def __init__(
        self,
        cause: BaseException,
        attempts: int,
        errors: list[dict[str, Any]] | None = None,
        timeline: list[str] | None = None,
    ):
        self.cause = cause
        self.attempts = attempts
        self.errors = errors or []
        self.timeline = timeline or []
        noun = "attempt" if attempts == 1 else "attempts"
        super().__init__(f"Execution failed after {attempts} {noun}: {cause}")


STRUCTURAL_ERRORS: tuple[type[NodeFlowError], ...] = (SchemaValidationError, SandboxPolicyViolation)
