"""
Prediction-job provider for the Replicate HTTP API.

A run creates a prediction, polls it until it reaches a terminal status
and returns the job id, its URL and the structured output; the
materializer turns that output into image, video and text nodes.
"""

import asyncio
import json
import logging
import os
from typing import Any

import httpx

from nodeflow.artifacts.extractor import extract_primary_output, is_likely_url
from nodeflow.errors import ProviderError
from nodeflow.llm.provider import GenerativeProvider, ProviderRequest, ProviderResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.replicate.com/v1"
TERMINAL_STATUSES = ("succeeded", "failed", "canceled")


def _is_token_stream(value: Any) -> bool:
    """Language models stream text as a list of string fragments."""
    return (
        isinstance(value, list)
        and bool(value)
        and all(isinstance(item, str) for item in value)
        and not any(is_likely_url(item) for item in value)
    )


class ReplicateProvider(GenerativeProvider):
    """Runs models as prediction jobs and polls them to completion."""

    name = "replicate"

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        poll_interval: float = 1.0,
        max_wait: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_token = api_token or os.environ.get("REPLICATE_API_TOKEN")
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def build_input(self, request: ProviderRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {"prompt": request.prompt}
        if request.context:
            payload["prompt"] = f"{request.prompt}\n\n{request.context}"
        if request.settings.system_prompt:
            payload["system_prompt"] = request.settings.system_prompt
        for file in request.files:
            payload.setdefault(file.name, file.content)
        payload.update(request.settings.input_fields)
        return payload

    async def run(self, request: ProviderRequest) -> ProviderResponse:
        model = request.settings.model
        if not model:
            raise ProviderError("No model configured for prediction job", provider=self.name)

        body: dict[str, Any] = {"input": self.build_input(request)}
        if ":" in model:
            body["version"] = model.split(":", 1)[1]
            path = "/predictions"
        else:
            path = f"/models/{model}/predictions"

        if self._client is not None:
            return await self._run(self._client, model, path, body)
        async with httpx.AsyncClient(timeout=60.0) as client:
            return await self._run(client, model, path, body)

    async def _run(
        self, client: httpx.AsyncClient, model: str, path: str, body: dict[str, Any]
    ) -> ProviderResponse:
        prediction = await self._request(client, "POST", f"{self.base_url}{path}", json=body)
        job_id = prediction.get("id")
        logger.info(f"Created prediction {job_id} for {model}", extra={"job_id": job_id})

        waited = 0.0
        while prediction.get("status") not in TERMINAL_STATUSES:
            if waited >= self.max_wait:
                raise ProviderError(
                    f"Prediction {job_id} did not finish within {self.max_wait:.0f}s",
                    provider=self.name,
                    job_id=job_id,
                )
            await asyncio.sleep(self.poll_interval)
            waited += self.poll_interval
            poll_url = (prediction.get("urls") or {}).get("get") or (
                f"{self.base_url}/predictions/{job_id}"
            )
            prediction = await self._request(client, "GET", poll_url)

        status = prediction.get("status")
        if status != "succeeded":
            error = prediction.get("error") or status
            raise ProviderError(f"Prediction {job_id} {status}: {error}", self.name, job_id)

        raw_output = prediction.get("output")
        if isinstance(raw_output, str):
            output = raw_output
        elif _is_token_stream(raw_output):
            output = "".join(raw_output)
        else:
            output = extract_primary_output(raw_output) or json.dumps(raw_output, default=str)

        urls = prediction.get("urls") or {}
        job_url = urls.get("web") or urls.get("get")
        return ProviderResponse(
            output=output,
            content_type="text/plain",
            provider=self.name,
            model=model,
            job_id=job_id,
            job_url=job_url,
            raw_output=raw_output,
            payload=prediction,
            logs=[f"Prediction {job_id} succeeded"],
            request_payload={"model": model, **body},
        )

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> dict[str, Any]:
        try:
            response = await client.request(method, url, headers=self._headers(), **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:300]
            raise ProviderError(
                f"Prediction API returned {e.response.status_code}: {detail}", provider=self.name
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Prediction API request failed: {e}", provider=self.name) from e
        return response.json()
