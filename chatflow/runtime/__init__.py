"""
Runtime module - the tool-calling conversation loop.

This module contains:
- AgentLoop: Iteration state machine (provider call, tools, confirmation)
- ChatFlow: Conversation-level operations built on the loop
- ToolExecutor / ToolCallParser / ToolPolicy: Tool call handling
- CheckpointCoordinator: Checkpoints around messages and tool batches
- ContextBudgetManager / Summarizer: Context window management
- AbortSignal: Cooperative cancellation
"""

from chatflow.runtime.agent_loop import AgentLoop, LoopOutcome
from chatflow.runtime.chat_flow import ChatFlow
from chatflow.runtime.checkpoint import CheckpointCoordinator
from chatflow.runtime.context_budget import BudgetResult, ContextBudgetManager
from chatflow.runtime.control import AbortSignal
from chatflow.runtime.prompt import PromptProvider, StaticPromptProvider
from chatflow.runtime.summarizer import Summarizer, SummaryResult
from chatflow.runtime.tokens import TiktokenCounter, TokenCounter
from chatflow.runtime.tool_call_parser import ToolCallParser
from chatflow.runtime.tool_executor import BatchResult, ToolExecutor, ToolProgress
from chatflow.runtime.tool_policy import ToolPolicy

__all__ = [
    "AgentLoop",
    "LoopOutcome",
    "ChatFlow",
    "CheckpointCoordinator",
    "BudgetResult",
    "ContextBudgetManager",
    "AbortSignal",
    "PromptProvider",
    "StaticPromptProvider",
    "Summarizer",
    "SummaryResult",
    "TiktokenCounter",
    "TokenCounter",
    "ToolCallParser",
    "BatchResult",
    "ToolExecutor",
    "ToolProgress",
    "ToolPolicy",
]
