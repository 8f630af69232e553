from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any

import httpx

from ..config import ClientSettings
from ..types import StreamEvent
from .sse import iter_events
from .tools import TOOL_DEFINITIONS

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable["str | None"]]


class AIModel(str, Enum):
    CHAT = "deepseek-chat"
    REASONER = "deepseek-reasoner"

    @property
    def display_name(self) -> str:
        return {
            AIModel.CHAT: "DeepSeek V3.2",
            AIModel.REASONER: "DeepSeek V3.2 Thinking",
        }[self]

    @property
    def supports_thinking(self) -> bool:
        return self is AIModel.REASONER


class GatewayClientError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthenticationRequiredError(GatewayClientError):
    def __init__(self) -> None:
        super().__init__("Unauthorized: please sign in to use AI", status_code=401)


class GatewayClient:
    """Streams chat turns from the gateway as decoded :mod:`sse` events."""

    def __init__(
        self,
        url: str,
        token_provider: TokenProvider,
        *,
        model: AIModel | str = AIModel.CHAT,
        tools: list[dict[str, Any]] | None = TOOL_DEFINITIONS,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        if not isinstance(model, AIModel) and model in {m.value for m in AIModel}:
            model = AIModel(model)
        self.model = model
        self.tools = tools
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0)
        )

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        token_provider: TokenProvider,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> "GatewayClient":
        return cls(
            settings.gateway_url,
            token_provider,
            model=settings.model,
            tools=TOOL_DEFINITIONS if settings.send_tools else None,
            timeout=settings.timeout_s,
            client=client,
        )

    @property
    def model_name(self) -> str:
        return self.model.value if isinstance(self.model, AIModel) else str(self.model)

    def build_payload(self, messages: list[dict[str, Any]]) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model_name, "messages": messages}
        if self.tools:
            payload["tools"] = self.tools
        if isinstance(self.model, AIModel) and self.model.supports_thinking:
            payload["thinking"] = {"type": "enabled"}
        return payload

    async def stream_chat(self, messages: list[dict[str, Any]]) -> AsyncIterator[StreamEvent]:
        token = await self._token_provider()
        if not token:
            raise AuthenticationRequiredError()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        payload = self.build_payload(messages)
        async with self._client.stream("POST", self.url, json=payload, headers=headers) as response:
            if response.status_code != 200:
                await response.aread()
                logger.warning(
                    "gateway.error status=%d body=%s", response.status_code, response.text[:200]
                )
                if response.status_code == 401:
                    raise GatewayClientError("Unauthorized (401)", status_code=401)
                raise GatewayClientError(
                    f"Server error: {response.status_code}", status_code=response.status_code
                )
            async for event in iter_events(response.aiter_lines()):
                yield event

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
