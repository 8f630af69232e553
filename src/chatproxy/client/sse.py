from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from ..types import Finish, ReasoningDelta, StreamEvent, TextDelta, ToolCallFragment

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def events_from_payload(payload: Any) -> list[StreamEvent]:
    """Map one decoded chunk to events; chunks without ``choices[0].delta`` map to none."""
    if not isinstance(payload, dict):
        return []
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    choice = choices[0]
    if not isinstance(choice, dict):
        return []
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        return []

    events: list[StreamEvent] = []
    reasoning = delta.get("reasoning_content")
    if isinstance(reasoning, str) and reasoning:
        events.append(ReasoningDelta(reasoning))
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(TextDelta(content))
    tool_calls = delta.get("tool_calls")
    if isinstance(tool_calls, list):
        for raw_call in tool_calls:
            if not isinstance(raw_call, dict):
                continue
            function = raw_call.get("function")
            function = function if isinstance(function, dict) else {}
            index = raw_call.get("index")
            call_id = raw_call.get("id")
            name = function.get("name")
            arguments = function.get("arguments")
            events.append(
                ToolCallFragment(
                    index=index if isinstance(index, int) else None,
                    call_id=call_id if isinstance(call_id, str) and call_id else None,
                    name=name if isinstance(name, str) and name else None,
                    arguments=arguments if isinstance(arguments, str) else None,
                )
            )
    finish_reason = choice.get("finish_reason")
    if isinstance(finish_reason, str) and finish_reason:
        events.append(Finish(finish_reason))
    return events


async def iter_events(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    """Decode SSE lines into stream events until ``data: [DONE]`` or the source ends."""
    async for raw_line in lines:
        line = raw_line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            continue
        data_text = line[len(DATA_PREFIX):].strip()
        if data_text == DONE_SENTINEL:
            return
        try:
            payload = json.loads(data_text)
        except json.JSONDecodeError:
            continue
        for event in events_from_payload(payload):
            yield event
