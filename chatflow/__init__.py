"""
Chatflow - tool-calling conversation loop

Top-level exports for easy access to core functionality.
"""

# Facade
from chatflow.runtime import AbortSignal, AgentLoop, ChatFlow, LoopOutcome

# Domain models
from chatflow.domain import (
    Checkpoint,
    Content,
    ContentPart,
    FunctionCall,
    FunctionResponse,
    LoopEvent,
    LoopEventType,
    LoopState,
    MessageRole,
    StreamChunk,
)

# Providers
from chatflow.providers import (
    BaseTool,
    CheckpointBackend,
    ConversationStore,
    InMemoryCheckpointBackend,
    InMemoryConversationStore,
    Provider,
    ToolRegistry,
)

# Config
from chatflow.config import ChannelConfig, ChatflowSettings, settings

__version__ = "0.1.0"

__all__ = [
    # Runtime
    "AbortSignal",
    "AgentLoop",
    "ChatFlow",
    "LoopOutcome",
    # Domain
    "Checkpoint",
    "Content",
    "ContentPart",
    "FunctionCall",
    "FunctionResponse",
    "LoopEvent",
    "LoopEventType",
    "LoopState",
    "MessageRole",
    "StreamChunk",
    # Providers
    "BaseTool",
    "CheckpointBackend",
    "ConversationStore",
    "InMemoryCheckpointBackend",
    "InMemoryConversationStore",
    "Provider",
    "ToolRegistry",
    # Config
    "ChannelConfig",
    "ChatflowSettings",
    "settings",
]
