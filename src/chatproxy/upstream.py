from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import UpstreamUnavailableError
from .pool import Credential
from .types import AttemptOutcome, ChatRequest, classify_status

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_URL = "https://api.deepseek.com/chat/completions"
DEFAULT_REASONING_MODELS: frozenset[str] = frozenset({"deepseek-reasoner"})


def build_upstream_payload(
    request: ChatRequest,
    *,
    reasoning_models: Collection[str] = DEFAULT_REASONING_MODELS,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": request.model,
        "messages": [
            message.model_dump(mode="json", exclude_none=True)
            for message in request.messages
        ],
        "stream": True,
        "stream_options": {"include_usage": True},
    }
    if request.tools:
        payload["tools"] = request.tools
    thinking_requested = request.thinking is not None and request.thinking.type == "enabled"
    if request.model in reasoning_models or thinking_requested:
        payload["thinking"] = {"type": "enabled"}
    return payload


@dataclass
class UpstreamResult:
    status: int
    outcome: AttemptOutcome
    response: httpx.Response | None = None
    body: str = ""

    def __post_init__(self) -> None:
        if (self.response is not None) != self.ok:
            raise ValueError("an open response is carried by successful results only")

    @property
    def ok(self) -> bool:
        return self.outcome is AttemptOutcome.SUCCESS


class UpstreamExecutor:
    """Issues one streaming chat-completions request per call.

    On success the returned response is still open; the caller owns it and
    must close it once the body has been relayed.
    """

    def __init__(
        self,
        url: str = DEFAULT_UPSTREAM_URL,
        *,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0)
        )

    async def execute(self, credential: Credential, payload: dict[str, Any]) -> UpstreamResult:
        headers = {
            "Authorization": f"Bearer {credential.secret}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        request = self._client.build_request("POST", self.url, headers=headers, json=payload)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.TransportError as exc:
            logger.error("upstream.unreachable credential=%s detail=%s", credential.id, exc)
            raise UpstreamUnavailableError(f"Upstream unreachable: {exc}") from exc

        outcome = classify_status(response.status_code)
        if outcome is AttemptOutcome.SUCCESS:
            return UpstreamResult(status=response.status_code, outcome=outcome, response=response)

        try:
            await response.aread()
            body = response.text
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()
        logger.warning(
            "upstream.error credential=%s status=%d outcome=%s body=%s",
            credential.id,
            response.status_code,
            outcome.value,
            body[:200],
        )
        return UpstreamResult(status=response.status_code, outcome=outcome, body=body)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
