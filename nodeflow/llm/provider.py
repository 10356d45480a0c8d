"""Generative provider abstraction for pluggable text and media backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from nodeflow.graph.context import CollectedFile, NextNodeMetadata
from nodeflow.graph.edge import Edge
from nodeflow.graph.node import GenerativeSettings, Node


@dataclass
class ProviderRequest:
    """Everything a generative node hands to its backend."""

    project_id: str
    node: Node
    prompt: str
    settings: GenerativeSettings
    context: str = ""
    previous_nodes: list[Node] = field(default_factory=list)
    next_nodes: list[NextNodeMetadata] = field(default_factory=list)
    files: list[CollectedFile] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    response_schema: dict[str, Any] | None = None


@dataclass
class ProviderResponse:
    """
    Reply from a generative backend.

    ``output`` is the reply rendered as text. Job-based backends also set
    ``job_id``/``job_url`` and keep the backend's structured output in
    ``raw_output`` and the whole job document in ``payload``.
    """

    output: str
    content_type: str = "text/plain"
    provider: str = ""
    model: str = ""
    job_id: str | None = None
    job_url: str | None = None
    raw_output: Any = None
    payload: Any = None
    logs: list[str] = field(default_factory=list)
    request_payload: dict[str, Any] | None = None

    @property
    def is_job(self) -> bool:
        return bool(self.job_id)


class GenerativeProvider(ABC):
    """
    Abstract generative provider.

    Implementations handle authentication, request formatting and polling,
    and raise ``ProviderError`` for any backend failure.
    """

    name: str = "provider"

    @abstractmethod
    async def run(self, request: ProviderRequest) -> ProviderResponse:
        pass
