from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[Dict[str, Any]], None] = None
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    reasoning_content: Optional[str] = None


class ThinkingOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "disabled"


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: str = Field(min_length=1)
    messages: List[ChatMessage]
    tools: Optional[List[Dict[str, Any]]] = None
    thinking: Optional[ThinkingOption] = None


class TranscriptEntry(BaseModel):
    req_id: str
    ts: float
    user_id: str
    model: str
    messages: List[Dict[str, Any]]
    response: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    credential_id: Optional[str] = None
    latency_ms: int = 0
    usage_prompt: int = 0
    usage_completion: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FATAL = "fatal"
    RETRYABLE = "retryable"
    OTHER = "other"


FATAL_STATUSES: frozenset[int] = frozenset({401, 402, 403})
RETRYABLE_STATUSES: frozenset[int] = frozenset({429})


def classify_status(status: int) -> AttemptOutcome:
    if 200 <= status < 300:
        return AttemptOutcome.SUCCESS
    if status in FATAL_STATUSES:
        return AttemptOutcome.FATAL
    if status in RETRYABLE_STATUSES:
        return AttemptOutcome.RETRYABLE
    return AttemptOutcome.OTHER


@dataclass(frozen=True)
class AttemptRecord:
    credential_id: str
    outcome: AttemptOutcome
    status: int | None = None


# Client-side stream events, in the order the decoder yields them.


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallFragment:
    index: int | None = None
    call_id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass(frozen=True)
class Finish:
    reason: str


StreamEvent = Union[TextDelta, ReasoningDelta, ToolCallFragment, Finish]


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str

    def to_message_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }
