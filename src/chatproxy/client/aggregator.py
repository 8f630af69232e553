from __future__ import annotations

import logging
from dataclasses import dataclass

from ..types import Finish, ReasoningDelta, StreamEvent, TextDelta, ToolCall, ToolCallFragment

logger = logging.getLogger(__name__)

TOOL_CALLS_FINISH = "tool_calls"


@dataclass
class PendingToolCall:
    index: int
    id: str
    name: str = ""
    arguments: str = ""


class DeltaAggregator:
    """Accumulates one turn's streamed deltas into message state.

    Tool-call fragments are keyed by their ``index``. A fragment without an
    index belongs to the call that is currently open, so providers that only
    ever stream one call at a time need no index at all.
    """

    def __init__(self) -> None:
        self.content = ""
        self.reasoning = ""
        self.finish_reason: str | None = None
        self._pending: dict[int, PendingToolCall] = {}
        self._open: int | None = None

    @property
    def has_pending_tool_calls(self) -> bool:
        return bool(self._pending)

    def pending(self) -> list[PendingToolCall]:
        return [self._pending[index] for index in sorted(self._pending)]

    def apply(self, event: StreamEvent) -> list[ToolCall]:
        """Apply one event; returns the finalized tool calls on a tool-call finish."""
        if isinstance(event, TextDelta):
            self.content += event.text
        elif isinstance(event, ReasoningDelta):
            self.reasoning += event.text
        elif isinstance(event, ToolCallFragment):
            self._apply_fragment(event)
        elif isinstance(event, Finish):
            self.finish_reason = event.reason
            if event.reason == TOOL_CALLS_FINISH:
                return self._finalize()
        return []

    def _apply_fragment(self, fragment: ToolCallFragment) -> None:
        index = fragment.index
        if index is None:
            index = self._open if self._open is not None else 0
            current = self._pending.get(index)
            if (
                current is not None
                and current.name
                and fragment.name
                and fragment.call_id != current.id
            ):
                index = max(self._pending) + 1

        pending = self._pending.get(index)
        if pending is None or (
            fragment.call_id is not None and pending.id != fragment.call_id
        ):
            pending = PendingToolCall(index=index, id=fragment.call_id or f"call_{index}")
            self._pending[index] = pending
        self._open = index

        if fragment.name:
            pending.name = fragment.name
        if fragment.arguments:
            pending.arguments += fragment.arguments

    def _finalize(self) -> list[ToolCall]:
        completed: list[ToolCall] = []
        for pending in self.pending():
            if not pending.name:
                logger.warning("tool_call.dropped id=%s reason=missing name", pending.id)
                continue
            completed.append(ToolCall(id=pending.id, name=pending.name, arguments=pending.arguments))
        self._pending.clear()
        self._open = None
        return completed
