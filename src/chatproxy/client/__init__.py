from .aggregator import DeltaAggregator, PendingToolCall
from .cancel import CancelToken, TurnCancelled
from .gateway_client import AIModel, AuthenticationRequiredError, GatewayClient, GatewayClientError
from .history import (
    DEFAULT_SYSTEM_PROMPT,
    ConversationHistory,
    DisplayMessage,
    MessageRole,
    messages_from_history,
)
from .orchestrator import TurnInProgressError, TurnOrchestrator, TurnState, friendly_error_message
from .sse import iter_events
from .tools import TOOL_DEFINITIONS, EditableWork, ToolExecutor, ToolName

__all__ = [
    "AIModel",
    "AuthenticationRequiredError",
    "CancelToken",
    "ConversationHistory",
    "DEFAULT_SYSTEM_PROMPT",
    "DeltaAggregator",
    "DisplayMessage",
    "EditableWork",
    "GatewayClient",
    "GatewayClientError",
    "MessageRole",
    "PendingToolCall",
    "TOOL_DEFINITIONS",
    "ToolExecutor",
    "ToolName",
    "TurnCancelled",
    "TurnInProgressError",
    "TurnOrchestrator",
    "TurnState",
    "friendly_error_message",
    "iter_events",
    "messages_from_history",
]
