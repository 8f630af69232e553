"""Client-side turn loop: stream, aggregate, run tools, continue.

One :class:`TurnOrchestrator` owns one conversation. A user ``send`` appends
to the history and starts a turn task; a tool-call finish appends the call
and its results and immediately streams the continuation. ``stop`` cancels
the task cooperatively and keeps whatever text had already arrived.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from enum import Enum
from typing import Any

from ..types import Finish, ReasoningDelta, StreamEvent, TextDelta, ToolCall
from .aggregator import DeltaAggregator
from .cancel import CancelToken, TurnCancelled
from .gateway_client import GatewayClient, GatewayClientError
from .history import (
    DEFAULT_SYSTEM_PROMPT,
    ConversationHistory,
    DisplayMessage,
    MessageRole,
    ThinkingSegment,
    ToolCallSegment,
    messages_from_history,
)
from .tools import EditableWork, ToolExecutor

logger = logging.getLogger(__name__)

_TERMINAL_GATEWAY_STATUSES = frozenset({401, 503})


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    TOOL_CALL_DETECTED = "tool_call_detected"
    EXECUTING_TOOL = "executing_tool"
    PLAIN_DONE = "plain_done"
    CANCELLED = "cancelled"
    FAILED = "failed"


class TurnInProgressError(RuntimeError):
    def __init__(self) -> None:
        super().__init__("a turn is already streaming for this conversation")


def friendly_error_message(exc: BaseException) -> str:
    description = f"{type(exc).__name__} {exc}".lower()
    if "timed out" in description or "timeout" in description:
        return "The request timed out. Please check your connection and try again."
    if "network" in description or "internet" in description or "connect" in description:
        return "Network error. Please check your internet connection."
    if "unauthorized" in description or "401" in description:
        return "Authentication failed. Please sign in again."
    if "server" in description or "500" in description:
        return "Server error. Please try again later."
    return "Something went wrong. Please try again."


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, GatewayClientError):
        return exc.status_code not in _TERMINAL_GATEWAY_STATUSES
    return True


class TurnOrchestrator:
    def __init__(
        self,
        client: GatewayClient,
        *,
        work: EditableWork | None = None,
        tools: ToolExecutor | None = None,
        system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.client = client
        self.work = work
        self.tools = tools or ToolExecutor(work)
        self.history = ConversationHistory(system_prompt)
        self.messages: list[DisplayMessage] = []
        self.state = TurnState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._token: CancelToken | None = None

    @property
    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    async def send(self, text: str) -> None:
        """Append a user message and run the turn (plus any tool continuations)."""
        text = text.strip()
        if not text:
            return
        if self.is_busy:
            raise TurnInProgressError()
        self.history.append_user(text)
        self.messages.append(DisplayMessage.user(text))
        self._sync_work()
        await self._run_turn()

    async def retry(self) -> None:
        if self.is_busy:
            raise TurnInProgressError()
        if self.messages and self.messages[-1].role is MessageRole.ERROR:
            self.messages.pop()
        await self._run_turn()

    async def stop(self) -> None:
        task, token = self._task, self._token
        if task is None or task.done():
            return
        if token is not None:
            token.cancel()
        task.cancel()
        await asyncio.wait({task})

    def clear(self) -> None:
        if self.is_busy:
            raise TurnInProgressError()
        self.history.reset()
        self.messages = []
        self.state = TurnState.IDLE
        self._sync_work()

    def load_history(self, entries: list[dict[str, Any]]) -> None:
        if self.is_busy:
            raise TurnInProgressError()
        if entries:
            self.history.load(entries)
        else:
            self.history.reset()
        self.messages = messages_from_history(entries)
        self.state = TurnState.IDLE

    async def _run_turn(self) -> None:
        token = CancelToken()
        self._token = token
        self._task = asyncio.create_task(self._run(token))
        await asyncio.wait({self._task})

    async def _run(self, token: CancelToken) -> None:
        placeholder = DisplayMessage(role=MessageRole.ASSISTANT, is_streaming=True)
        self.messages.append(placeholder)
        aggregator = DeltaAggregator()
        rounds = 0
        round_start = 0
        try:
            while True:
                self.state = TurnState.STREAMING
                round_start = len(placeholder.segments)
                calls = await self._stream_round(token, aggregator, placeholder)
                token.raise_if_cancelled()
                if not calls:
                    break
                rounds += 1
                self.state = TurnState.TOOL_CALL_DETECTED
                self._run_tools(calls, aggregator, placeholder)
                aggregator = DeltaAggregator()
        except (TurnCancelled, asyncio.CancelledError):
            self._commit_partial(aggregator, placeholder)
            self.state = TurnState.CANCELLED
            logger.info("turn.cancelled tool_rounds=%d", rounds)
            return
        except Exception as exc:
            logger.warning("turn.failed error=%s: %s", type(exc).__name__, exc)
            self._fail(exc, placeholder, round_start)
            return

        self._commit(aggregator, placeholder)
        self.state = TurnState.PLAIN_DONE
        logger.info("turn.done tool_rounds=%d chars=%d", rounds, len(aggregator.content))

    async def _stream_round(
        self,
        token: CancelToken,
        aggregator: DeltaAggregator,
        placeholder: DisplayMessage,
    ) -> list[ToolCall]:
        stream = self.client.stream_chat(self.history.to_payload())
        async with aclosing(stream) as events:
            async for event in events:
                token.raise_if_cancelled()
                calls = aggregator.apply(event)
                self._render(event, placeholder)
                if calls:
                    return calls
        return []

    def _run_tools(
        self,
        calls: list[ToolCall],
        aggregator: DeltaAggregator,
        placeholder: DisplayMessage,
    ) -> None:
        # All results are appended before the next await so the history
        # never holds a tool-call entry without its results.
        self.history.append_tool_calls(
            calls, content=aggregator.content, reasoning=aggregator.reasoning
        )
        self.state = TurnState.EXECUTING_TOOL
        for call in calls:
            segment = ToolCallSegment(call_id=call.id, name=call.name, arguments=call.arguments)
            placeholder.segments.append(segment)
            segment.result = self.tools.execute(call.name, call.arguments)
            self.history.append_tool_result(call.id, segment.result)
            logger.info("tool.executed name=%s id=%s", call.name, call.id)
        self._sync_work()

    def _render(self, event: StreamEvent, placeholder: DisplayMessage) -> None:
        last = placeholder.segments[-1] if placeholder.segments else None
        active = last if isinstance(last, ThinkingSegment) and last.is_active else None
        if isinstance(event, ReasoningDelta):
            if active is None:
                active = ThinkingSegment(started_at=time.time(), is_active=True)
                placeholder.segments.append(active)
            active.text += event.text
        elif isinstance(event, (TextDelta, Finish)):
            if active is not None:
                active.is_active = False
                active.ended_at = time.time()
            if isinstance(event, TextDelta):
                placeholder.append_content(event.text)

    def _commit(self, aggregator: DeltaAggregator, placeholder: DisplayMessage) -> None:
        if aggregator.content or aggregator.reasoning:
            self.history.append_assistant(aggregator.content, reasoning=aggregator.reasoning)
            self._sync_work()
        self._settle(placeholder)

    def _commit_partial(self, aggregator: DeltaAggregator, placeholder: DisplayMessage) -> None:
        if aggregator.content:
            self.history.append_assistant(aggregator.content, reasoning=aggregator.reasoning)
            self._sync_work()
        self._settle(placeholder)

    def _settle(self, placeholder: DisplayMessage) -> None:
        placeholder.is_streaming = False
        for segment in placeholder.segments:
            if isinstance(segment, ThinkingSegment) and segment.is_active:
                segment.is_active = False
                segment.ended_at = time.time()
        if placeholder.is_empty and placeholder in self.messages:
            self.messages.remove(placeholder)

    def _fail(self, exc: Exception, placeholder: DisplayMessage, round_start: int) -> None:
        # Earlier tool rounds are already in history; only the failing
        # round's uncommitted text and reasoning are dropped.
        kept = placeholder.segments[:round_start]
        kept.extend(
            s for s in placeholder.segments[round_start:] if isinstance(s, ToolCallSegment)
        )
        placeholder.segments = [
            s for s in kept if not (isinstance(s, ThinkingSegment) and not s.text)
        ]
        self._settle(placeholder)
        self.messages.append(
            DisplayMessage.error(friendly_error_message(exc), retryable=_is_retryable(exc))
        )
        self.state = TurnState.FAILED

    def _sync_work(self) -> None:
        if self.work is None:
            return
        self.work.chat_history = self.history.to_payload()
        self.work.mark_dirty()
