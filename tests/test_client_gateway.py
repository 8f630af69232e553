from __future__ import annotations

import json

import httpx
import pytest

from src.chatproxy.client.gateway_client import (
    AIModel,
    AuthenticationRequiredError,
    GatewayClient,
    GatewayClientError,
)
from src.chatproxy.config import ClientSettings
from src.chatproxy.types import Finish, TextDelta

URL = "https://gateway.test/v1/chat/completions"
MESSAGES = [{"role": "user", "content": "hi"}]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


async def _token() -> str:
    return "user-token"


async def _no_token() -> None:
    return None


def _client(handler, **kwargs) -> GatewayClient:  # type: ignore[no-untyped-def]
    transport = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayClient(URL, _token, client=transport, **kwargs)


@pytest.mark.anyio
async def test_stream_chat_sends_history_and_decodes_events(anyio_backend: str) -> None:
    _ = anyio_backend
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = (
            b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
            b'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
            b"data: [DONE]\n\n"
        )
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)

    client = _client(handler)

    events = [event async for event in client.stream_chat(MESSAGES)]

    assert events == [TextDelta("Hi"), Finish("stop")]
    assert seen[0].headers["authorization"] == "Bearer user-token"
    payload = json.loads(seen[0].content)
    assert payload["model"] == "deepseek-chat"
    assert payload["messages"] == MESSAGES
    assert {tool["function"]["name"] for tool in payload["tools"]} >= {"edit_html"}
    assert "thinking" not in payload


@pytest.mark.anyio
async def test_missing_token_fails_before_any_request(anyio_backend: str) -> None:
    _ = anyio_backend
    calls: list[httpx.Request] = []
    client = GatewayClient(
        URL,
        _no_token,
        client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200))
        ),
    )

    with pytest.raises(AuthenticationRequiredError):
        async for _ in client.stream_chat(MESSAGES):
            pass

    assert calls == []


@pytest.mark.anyio
@pytest.mark.parametrize(("status", "message"), [(401, "Unauthorized (401)"), (503, "Server error: 503")])
async def test_error_statuses_raise(status: int, message: str, anyio_backend: str) -> None:
    _ = anyio_backend
    client = _client(lambda request: httpx.Response(status, json={"error": "nope"}))

    with pytest.raises(GatewayClientError) as excinfo:
        async for _ in client.stream_chat(MESSAGES):
            pass

    assert excinfo.value.message == message
    assert excinfo.value.status_code == status


def test_reasoner_requests_thinking() -> None:
    client = GatewayClient(URL, _token, model=AIModel.REASONER, client=httpx.AsyncClient())

    payload = client.build_payload(MESSAGES)

    assert payload["model"] == "deepseek-reasoner"
    assert payload["thinking"] == {"type": "enabled"}


def test_from_settings_honours_model_and_tool_switch() -> None:
    settings = ClientSettings(gateway_url=URL, model="deepseek-reasoner", send_tools=False)

    client = GatewayClient.from_settings(settings, _token, client=httpx.AsyncClient())
    payload = client.build_payload(MESSAGES)

    assert client.model is AIModel.REASONER
    assert "tools" not in payload
    assert payload["thinking"] == {"type": "enabled"}
