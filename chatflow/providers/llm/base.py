"""
Provider abstraction layer - Pure LLM Interface

Responsibilities:
- Encapsulate a vendor's generate call behind one signature
- Return either a finished message or a stream of chunks

Does NOT handle:
- Tool loop logic
- History persistence
- Context budgeting
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator

from pydantic import BaseModel, ConfigDict, Field

from chatflow.config.schema import ChannelConfig
from chatflow.domain import Content, StreamChunk

if TYPE_CHECKING:
    from chatflow.runtime.control import AbortSignal


class GenerateRequest(BaseModel):
    """Everything a provider needs for one model call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    conversation_id: str
    channel: ChannelConfig
    history: list[Content] = Field(default_factory=list)
    system_prompt: str = ""
    dynamic_context: str | None = None
    model_override: str | None = None
    # Summarization requests are sent without tool declarations
    skip_tools: bool = False


class Provider(ABC):
    """
    Unified provider abstract base class.

    ``generate`` returns either a complete ``Content`` or an async iterator
    of ``StreamChunk``; callers must handle both.
    """

    @abstractmethod
    async def generate(
        self,
        request: GenerateRequest,
        abort_signal: "AbortSignal | None" = None,
    ) -> Content | AsyncIterator[StreamChunk]:
        """
        Call the model.

        Args:
            request: History, prompts and channel for this call
            abort_signal: Cooperative cancellation signal

        Returns:
            Content for non-streaming channels, AsyncIterator[StreamChunk]
            for streaming ones

        Raises:
            ProviderError: network, auth, rate-limit or vendor failures
        """
        pass


__all__ = ["GenerateRequest", "Provider", "StreamChunk"]
