"""
Core domain models for chatflow.

This module contains the conversation data model:
- Content: one turn in conversation history (role + ordered parts)
- ContentPart: exactly one of text, thought text, function call,
  function response or inline attachment
- FunctionCall / FunctionResponse: tool call correlation by id
- ToolExecutionResult: outcome of one executed (or refused) call
- Checkpoint: immutable rollback marker
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


# ============================================================================
# Enums
# ============================================================================


class MessageRole(str, Enum):
    """Conversation roles. Function responses travel as user messages."""

    USER = "user"
    MODEL = "model"


class CheckpointPhase(str, Enum):
    """Whether a checkpoint was taken before or after its entity."""

    BEFORE = "before"
    AFTER = "after"


class LoopState(str, Enum):
    """Agent loop states."""

    ITERATING = "iterating"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ToolStatus(str, Enum):
    """Status reported for a finished tool call."""

    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


def generate_tool_call_id() -> str:
    """
    Generate a unique tool call id.

    Format: fc_{millis}_{random}, e.g. fc_1704628800000_a1b2c3d
    """
    return f"fc_{int(time.time() * 1000)}_{uuid4().hex[:7]}"


# ============================================================================
# Parts
# ============================================================================


class InlineData(BaseModel):
    """Inline binary attachment (base64 payload)."""

    mime_type: str
    data: str
    display_name: str | None = None


class FunctionCall(BaseModel):
    """A tool call requested by the model."""

    id: str | None = None
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class FunctionResponse(BaseModel):
    """Result of a tool call, correlated by ``id``."""

    id: str | None = None
    name: str
    response: dict[str, Any] = Field(default_factory=dict)
    # Side-channel multimodal parts for providers that accept them
    parts: list["ContentPart"] | None = None


class ContentPart(BaseModel):
    """
    One part of a message.

    Exactly one payload is set: ``text`` (``thought`` marks reasoning text),
    ``function_call``, ``function_response`` or ``inline_data``.
    """

    text: str | None = None
    thought: bool = False
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None
    inline_data: InlineData | None = None

    def is_text(self) -> bool:
        return self.text is not None and not self.thought

    def is_thought(self) -> bool:
        return self.text is not None and self.thought


FunctionResponse.model_rebuild()


class UsageMetadata(BaseModel):
    """Provider-reported token usage for a model message."""

    prompt_token_count: int | None = None
    candidates_token_count: int | None = None
    thoughts_token_count: int | None = None
    total_token_count: int | None = None


# ============================================================================
# Messages
# ============================================================================


class Content(BaseModel):
    """
    One turn in conversation history.

    The index of a Content in the append-only log is its durable identity.
    """

    role: MessageRole
    parts: list[ContentPart] = Field(default_factory=list)

    # --- Flags ---
    is_user_input: bool = False
    is_function_response: bool = False
    is_summary: bool = False
    summarized_message_count: int | None = None

    # --- Token accounting ---
    token_count_by_channel: dict[str, int] = Field(default_factory=dict)
    estimated_token_count: int | None = None
    usage_metadata: UsageMetadata | None = None

    # --- Turn cache (set on the turn's starting user message) ---
    turn_dynamic_context: str | None = None

    response_duration_ms: float | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    def is_round_start(self) -> bool:
        """A user message that is not a function response opens a round."""
        return self.role == MessageRole.USER and not self.is_function_response

    def has_function_calls(self) -> bool:
        return any(p.function_call is not None for p in self.parts)

    def has_text(self) -> bool:
        return any(p.is_text() and p.text for p in self.parts)

    def function_response_ids(self) -> list[str]:
        return [
            p.function_response.id
            for p in self.parts
            if p.function_response is not None and p.function_response.id
        ]

    @property
    def text(self) -> str:
        """Concatenated non-thought text."""
        return "\n".join(p.text for p in self.parts if p.is_text() and p.text)


class StreamChunk(BaseModel):
    """
    Minimal unit of provider streaming output.

    ``delta`` carries new parts; text deltas are appended to the running
    text part of the same kind by the accumulator.
    """

    delta: list[ContentPart] = Field(default_factory=list)
    usage_metadata: UsageMetadata | None = None
    finish_reason: str | None = None
    done: bool = False


# ============================================================================
# Tool execution
# ============================================================================


class ToolExecutionResult(BaseModel):
    """Outcome of one tool call as shown to the caller."""

    id: str
    name: str
    result: dict[str, Any] = Field(default_factory=dict)

    @property
    def rejected(self) -> bool:
        return bool(self.result.get("rejected"))

    @property
    def cancelled(self) -> bool:
        return bool(self.result.get("cancelled"))

    @property
    def requires_confirmation(self) -> bool:
        """The tool asks the user to review its output before the model continues."""
        return bool(self.result.get("requiresUserConfirmation"))

    @property
    def failed(self) -> bool:
        return self.result.get("success") is False or bool(self.result.get("error"))


class Checkpoint(BaseModel):
    """Immutable rollback marker tied to a message index and phase."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    conversation_id: str
    message_index: int
    label: str
    phase: CheckpointPhase
    created_at: datetime = Field(default_factory=datetime.now)


__all__ = [
    "MessageRole",
    "CheckpointPhase",
    "LoopState",
    "ToolStatus",
    "generate_tool_call_id",
    "InlineData",
    "FunctionCall",
    "FunctionResponse",
    "ContentPart",
    "UsageMetadata",
    "Content",
    "StreamChunk",
    "ToolExecutionResult",
    "Checkpoint",
]
