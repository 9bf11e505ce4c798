"""
Providers module - External collaborator contracts.

This module contains adapters for external services:
- llm/: LLM provider interface and stream accumulation
- storage/: Conversation stores (InMemory)
- checkpoint/: Checkpoint backends (InMemory)
- tools/: Tool contracts, registry and MCP dispatch
"""

from .checkpoint import CheckpointBackend, InMemoryCheckpointBackend
from .llm import GenerateRequest, Provider, StreamAccumulator
from .storage import ConversationStore, InMemoryConversationStore
from .tools import BaseTool, McpClient, ToolContext, ToolRegistry

__all__ = [
    # LLM
    "GenerateRequest",
    "Provider",
    "StreamAccumulator",
    # Storage
    "ConversationStore",
    "InMemoryConversationStore",
    # Checkpoint
    "CheckpointBackend",
    "InMemoryCheckpointBackend",
    # Tools
    "BaseTool",
    "McpClient",
    "ToolContext",
    "ToolRegistry",
]
