"""Chat orchestrator: per-session state machine over interchangeable LLM backends."""

from .agents import AgentDirectory
from .config import ProviderSettings
from .errors import (
    ChatServiceError,
    ConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    StreamWriteError,
    ToolExecutionError,
    ValidationError,
)
from .llm import build_adapter, resolve_adapter, select_provider
from .models import (
    AgentIdentity,
    ChatState,
    Message,
    ProviderConfig,
    ProviderKind,
    ToolCall,
    ToolCallRequest,
)
from .orchestrator import ConversationOrchestrator, TurnResult
from .session_store import SessionRegistry
from .streaming import StreamChannel
from .tools import BaseTool, StaticToolRegistry, ToolRegistry, execute_tool_calls

__all__ = [
    "AgentDirectory",
    "AgentIdentity",
    "BaseTool",
    "ChatServiceError",
    "ChatState",
    "ConfigurationError",
    "ConversationOrchestrator",
    "Message",
    "ProviderConfig",
    "ProviderError",
    "ProviderKind",
    "ProviderSettings",
    "ProviderTimeoutError",
    "SessionRegistry",
    "StaticToolRegistry",
    "StreamChannel",
    "StreamWriteError",
    "ToolCall",
    "ToolCallRequest",
    "ToolExecutionError",
    "ToolRegistry",
    "TurnResult",
    "ValidationError",
    "build_adapter",
    "execute_tool_calls",
    "resolve_adapter",
    "select_provider",
]
