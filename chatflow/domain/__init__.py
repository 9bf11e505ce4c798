"""
Domain module - Pure domain models with no external dependencies.

This module contains the conversation data model and loop events.
"""

# Models
from .models import (
    Checkpoint,
    CheckpointPhase,
    Content,
    ContentPart,
    FunctionCall,
    FunctionResponse,
    InlineData,
    LoopState,
    MessageRole,
    StreamChunk,
    ToolExecutionResult,
    ToolStatus,
    UsageMetadata,
    generate_tool_call_id,
)

# Events
from .events import (
    AutoSummaryPhase,
    ErrorCode,
    LoopEvent,
    LoopEventType,
    create_auto_summary_event,
    create_auto_summary_status_event,
    create_awaiting_confirmation_event,
    create_cancelled_event,
    create_checkpoints_event,
    create_chunk_event,
    create_complete_event,
    create_error_event,
    create_tool_iteration_event,
    create_tool_status_event,
    create_tools_executing_event,
)

__all__ = [
    # Models
    "Checkpoint",
    "CheckpointPhase",
    "Content",
    "ContentPart",
    "FunctionCall",
    "FunctionResponse",
    "InlineData",
    "LoopState",
    "MessageRole",
    "StreamChunk",
    "ToolExecutionResult",
    "ToolStatus",
    "UsageMetadata",
    "generate_tool_call_id",
    # Events
    "AutoSummaryPhase",
    "ErrorCode",
    "LoopEvent",
    "LoopEventType",
    "create_auto_summary_event",
    "create_auto_summary_status_event",
    "create_awaiting_confirmation_event",
    "create_cancelled_event",
    "create_checkpoints_event",
    "create_chunk_event",
    "create_complete_event",
    "create_error_event",
    "create_tool_iteration_event",
    "create_tool_status_event",
    "create_tools_executing_event",
]
