"""
Event protocol for streaming agent loop execution.

The loop yields ``LoopEvent`` objects to its caller (usually a UI-facing
handler that maps them onto its own transport).
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .models import (
    Checkpoint,
    Content,
    FunctionCall,
    StreamChunk,
    ToolExecutionResult,
    ToolStatus,
)


class LoopEventType(str, Enum):
    """Event types yielded by the agent loop"""

    CHUNK = "chunk"
    TOOLS_EXECUTING = "tools_executing"
    TOOL_STATUS = "tool_status"
    TOOL_ITERATION = "tool_iteration"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CHECKPOINTS_ONLY = "checkpoints_only"
    AUTO_SUMMARY_STATUS = "auto_summary_status"
    AUTO_SUMMARY = "auto_summary"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"


class ErrorCode(str, Enum):
    PROVIDER_ERROR = "PROVIDER_ERROR"
    MAX_TOOL_ITERATIONS = "MAX_TOOL_ITERATIONS"
    NO_HISTORY = "NO_HISTORY"
    INVALID_STATE = "INVALID_STATE"
    NO_FUNCTION_CALLS = "NO_FUNCTION_CALLS"
    MESSAGE_NOT_FOUND = "MESSAGE_NOT_FOUND"
    INVALID_MESSAGE_ROLE = "INVALID_MESSAGE_ROLE"
    CONFIG_DISABLED = "CONFIG_DISABLED"


class AutoSummaryPhase(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class LoopEvent(BaseModel):
    """
    Unified event for loop streaming.

    Only the fields relevant to ``type`` are populated.
    """

    type: LoopEventType
    conversation_id: str
    timestamp: datetime = Field(default_factory=datetime.now)

    # CHUNK
    chunk: StreamChunk | None = None

    # Message carried by TOOL_ITERATION / AWAITING_CONFIRMATION / COMPLETE / CANCELLED
    content: Content | None = None

    # TOOLS_EXECUTING / AWAITING_CONFIRMATION
    pending_calls: list[FunctionCall] | None = None

    # TOOL_STATUS
    call: FunctionCall | None = None
    status: ToolStatus | None = None
    result: dict[str, Any] | None = None

    # TOOL_ITERATION / AWAITING_CONFIRMATION (prior results)
    results: list[ToolExecutionResult] | None = None

    checkpoints: list[Checkpoint] = Field(default_factory=list)

    # AUTO_SUMMARY_STATUS / AUTO_SUMMARY
    phase: AutoSummaryPhase | None = None
    summary: Content | None = None
    insert_index: int | None = None

    # ERROR
    code: ErrorCode | None = None
    message: str | None = None

    iteration: int | None = None


# ============================================================================
# Event Factory Functions
# ============================================================================


def create_chunk_event(conversation_id: str, chunk: StreamChunk) -> LoopEvent:
    """Create a CHUNK event"""
    return LoopEvent(type=LoopEventType.CHUNK, conversation_id=conversation_id, chunk=chunk)


def create_tools_executing_event(
    conversation_id: str, pending_calls: list[FunctionCall]
) -> LoopEvent:
    """Create a TOOLS_EXECUTING event listing calls not yet finished"""
    return LoopEvent(
        type=LoopEventType.TOOLS_EXECUTING,
        conversation_id=conversation_id,
        pending_calls=list(pending_calls),
    )


def create_tool_status_event(
    conversation_id: str,
    call: FunctionCall,
    status: ToolStatus,
    result: dict[str, Any],
) -> LoopEvent:
    """Create a TOOL_STATUS event"""
    return LoopEvent(
        type=LoopEventType.TOOL_STATUS,
        conversation_id=conversation_id,
        call=call,
        status=status,
        result=result,
    )


def create_tool_iteration_event(
    conversation_id: str,
    content: Content,
    results: list[ToolExecutionResult],
    checkpoints: list[Checkpoint],
    *,
    iteration: int | None = None,
) -> LoopEvent:
    """Create a TOOL_ITERATION event"""
    return LoopEvent(
        type=LoopEventType.TOOL_ITERATION,
        conversation_id=conversation_id,
        content=content,
        results=results,
        checkpoints=checkpoints,
        iteration=iteration,
    )


def create_awaiting_confirmation_event(
    conversation_id: str,
    pending_calls: list[FunctionCall],
    content: Content,
    prior_results: list[ToolExecutionResult],
    checkpoints: list[Checkpoint],
) -> LoopEvent:
    """Create an AWAITING_CONFIRMATION event"""
    return LoopEvent(
        type=LoopEventType.AWAITING_CONFIRMATION,
        conversation_id=conversation_id,
        pending_calls=pending_calls,
        content=content,
        results=prior_results,
        checkpoints=checkpoints,
    )


def create_checkpoints_event(
    conversation_id: str, checkpoints: list[Checkpoint]
) -> LoopEvent:
    """Create a CHECKPOINTS_ONLY event"""
    return LoopEvent(
        type=LoopEventType.CHECKPOINTS_ONLY,
        conversation_id=conversation_id,
        checkpoints=checkpoints,
    )


def create_auto_summary_status_event(
    conversation_id: str, phase: AutoSummaryPhase, message: str | None = None
) -> LoopEvent:
    """Create an AUTO_SUMMARY_STATUS event"""
    return LoopEvent(
        type=LoopEventType.AUTO_SUMMARY_STATUS,
        conversation_id=conversation_id,
        phase=phase,
        message=message,
    )


def create_auto_summary_event(
    conversation_id: str, summary: Content, insert_index: int
) -> LoopEvent:
    """Create an AUTO_SUMMARY event carrying the inserted summary message"""
    return LoopEvent(
        type=LoopEventType.AUTO_SUMMARY,
        conversation_id=conversation_id,
        summary=summary,
        insert_index=insert_index,
    )


def create_complete_event(
    conversation_id: str, content: Content, checkpoints: list[Checkpoint]
) -> LoopEvent:
    """Create a COMPLETE event"""
    return LoopEvent(
        type=LoopEventType.COMPLETE,
        conversation_id=conversation_id,
        content=content,
        checkpoints=checkpoints,
    )


def create_cancelled_event(
    conversation_id: str, content: Content | None = None
) -> LoopEvent:
    """Create a CANCELLED event, optionally carrying persisted partial content"""
    return LoopEvent(
        type=LoopEventType.CANCELLED, conversation_id=conversation_id, content=content
    )


def create_error_event(
    conversation_id: str, code: ErrorCode, message: str
) -> LoopEvent:
    """Create an ERROR event"""
    return LoopEvent(
        type=LoopEventType.ERROR,
        conversation_id=conversation_id,
        code=code,
        message=message,
    )


__all__ = [
    "LoopEventType",
    "ErrorCode",
    "AutoSummaryPhase",
    "LoopEvent",
    "create_chunk_event",
    "create_tools_executing_event",
    "create_tool_status_event",
    "create_tool_iteration_event",
    "create_awaiting_confirmation_event",
    "create_checkpoints_event",
    "create_auto_summary_status_event",
    "create_auto_summary_event",
    "create_complete_event",
    "create_cancelled_event",
    "create_error_event",
]
