from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union

from ..types import ChatMessage, ToolCall

DEFAULT_SYSTEM_PROMPT = """\
You are a creative AI assistant in Swipop, a social app for sharing HTML/CSS/JS creative works.
Help users create interactive, visually appealing web components.

You have tools to:
- edit_html: Set the HTML content (body content only, no html/head/body tags)
- edit_css: Set the CSS styles (animations, layouts, effects)
- edit_javascript: Set the JavaScript code (interactivity, logic)
- update_metadata: Set title, description, and tags

When creating works:
1. Use modern CSS (flexbox, grid, custom properties, animations)
2. Write clean, semantic HTML
3. Use ES6+ JavaScript
4. Make it visually impressive - users share these as creative works
5. Add smooth animations and transitions
6. Consider mobile responsiveness

Be creative and make things that look amazing!"""


class ConversationHistory:
    """Ordered wire-format entries; the only thing ever sent upstream."""

    def __init__(self, system_prompt: str | None = DEFAULT_SYSTEM_PROMPT) -> None:
        self.system_prompt = system_prompt
        self.entries: list[ChatMessage] = []
        self.reset()

    def __len__(self) -> int:
        return len(self.entries)

    def reset(self) -> None:
        self.entries = []
        if self.system_prompt:
            self.entries.append(ChatMessage(role="system", content=self.system_prompt))

    def load(self, payload: Iterable[dict[str, Any]]) -> None:
        self.entries = [ChatMessage.model_validate(entry) for entry in payload]

    def append_user(self, text: str) -> None:
        self.entries.append(ChatMessage(role="user", content=text))

    def append_assistant(self, content: str, *, reasoning: str = "") -> None:
        self.entries.append(
            ChatMessage(role="assistant", content=content, reasoning_content=reasoning or None)
        )

    def append_tool_calls(
        self,
        calls: list[ToolCall],
        *,
        content: str = "",
        reasoning: str = "",
    ) -> None:
        self.entries.append(
            ChatMessage(
                role="assistant",
                content=content or None,
                reasoning_content=reasoning or None,
                tool_calls=[call.to_message_payload() for call in calls],
            )
        )

    def append_tool_result(self, call_id: str, result: str) -> None:
        self.entries.append(ChatMessage(role="tool", tool_call_id=call_id, content=result))

    def to_payload(self) -> list[dict[str, Any]]:
        return [entry.model_dump(mode="json", exclude_none=True) for entry in self.entries]


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


@dataclass
class ThinkingSegment:
    text: str = ""
    started_at: float | None = None
    ended_at: float | None = None
    is_active: bool = False

    @property
    def duration(self) -> int | None:
        if self.started_at is None:
            return None
        end = self.ended_at if self.ended_at is not None else time.time()
        return int(end - self.started_at)


@dataclass
class ToolCallSegment:
    call_id: str
    name: str
    arguments: str
    result: str | None = None


@dataclass
class ContentSegment:
    text: str


Segment = Union[ThinkingSegment, ToolCallSegment, ContentSegment]


@dataclass
class DisplayMessage:
    role: MessageRole
    segments: list[Segment] = field(default_factory=list)
    is_streaming: bool = False
    retryable: bool = True
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def user(cls, text: str) -> "DisplayMessage":
        return cls(role=MessageRole.USER, segments=[ContentSegment(text)])

    @classmethod
    def error(cls, text: str, *, retryable: bool = True) -> "DisplayMessage":
        return cls(role=MessageRole.ERROR, segments=[ContentSegment(text)], retryable=retryable)

    @property
    def text(self) -> str:
        return "".join(s.text for s in self.segments if isinstance(s, ContentSegment))

    @property
    def thinking(self) -> str:
        return "".join(s.text for s in self.segments if isinstance(s, ThinkingSegment))

    @property
    def tool_calls(self) -> list[ToolCallSegment]:
        return [s for s in self.segments if isinstance(s, ToolCallSegment)]

    @property
    def is_empty(self) -> bool:
        return not any(
            not isinstance(s, (ThinkingSegment, ContentSegment)) or s.text for s in self.segments
        )

    def append_content(self, text: str) -> None:
        if not text:
            return
        if self.segments and isinstance(self.segments[-1], ContentSegment):
            self.segments[-1].text += text
        else:
            self.segments.append(ContentSegment(text))


def _find_tool_result(entries: list[dict[str, Any]], call_id: str, start: int) -> str | None:
    for entry in entries[start:]:
        if entry.get("role") == "tool" and entry.get("tool_call_id") == call_id:
            content = entry.get("content")
            return content if isinstance(content, str) else None
    return None


def messages_from_history(entries: list[dict[str, Any]]) -> list[DisplayMessage]:
    """Rebuild display messages from wire entries.

    Consecutive assistant entries (tool-call rounds followed by the final
    answer) merge into one message. System and tool entries are not shown;
    tool results are attached to the call that produced them.
    """
    messages: list[DisplayMessage] = []
    current: DisplayMessage | None = None

    for index, entry in enumerate(entries):
        role = entry.get("role")
        if role == "user":
            if current is not None:
                messages.append(current)
                current = None
            content = entry.get("content")
            if isinstance(content, str):
                messages.append(DisplayMessage.user(content))
        elif role == "assistant":
            if current is None:
                current = DisplayMessage(role=MessageRole.ASSISTANT)
            reasoning = entry.get("reasoning_content")
            if isinstance(reasoning, str) and reasoning:
                current.segments.append(ThinkingSegment(text=reasoning))
            for call in entry.get("tool_calls") or []:
                function = call.get("function") if isinstance(call, dict) else None
                if not isinstance(function, dict):
                    continue
                call_id = call.get("id")
                name = function.get("name")
                arguments = function.get("arguments")
                if isinstance(call_id, str) and isinstance(name, str) and isinstance(arguments, str):
                    current.segments.append(
                        ToolCallSegment(
                            call_id=call_id,
                            name=name,
                            arguments=arguments,
                            result=_find_tool_result(entries, call_id, index),
                        )
                    )
            content = entry.get("content")
            if isinstance(content, str) and content:
                current.append_content(content)

    if current is not None and current.segments:
        messages.append(current)
    return messages
