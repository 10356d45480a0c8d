"""Mock provider returning canned responses, for tests and offline runs."""

from collections.abc import Callable

from nodeflow.llm.provider import GenerativeProvider, ProviderRequest, ProviderResponse


class MockProvider(GenerativeProvider):
    """
    Replays queued responses in order; a queued exception is raised instead.

    When the queue runs dry the last item repeats. ``handler`` overrides
    the queue entirely.
    """

    name = "mock"

    def __init__(
        self,
        responses: list[ProviderResponse | Exception] | None = None,
        handler: Callable[[ProviderRequest], ProviderResponse] | None = None,
    ):
        self.responses = list(responses or [ProviderResponse(output="mock response")])
        self.handler = handler
        self.requests: list[ProviderRequest] = []

    async def run(self, request: ProviderRequest) -> ProviderResponse:
        self.requests.append(request)
        if self.handler is not None:
            return self.handler(request)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        if not item.provider:
            item.provider = self.name
        return item
