"""Base abstractions for tools within the chatflow stack."""

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from chatflow.config.schema import ChannelConfig, ToolMode

if TYPE_CHECKING:
    from chatflow.runtime.control import AbortSignal


class MultimodalCapability(BaseModel):
    """What kind of binary payload a channel accepts from tools."""

    supports_images: bool = False
    supports_documents: bool = False
    # Payload can travel back to the model through history at all
    supports_history_multimodal: bool = False

    @classmethod
    def for_channel(cls, channel: ChannelConfig | None) -> "MultimodalCapability":
        """
        Derive the capability of a channel.

        Prompt-mode encodings (xml/json) carry payloads as user attachments,
        which every channel accepts. Native function calling only carries
        them for gemini and anthropic. Nothing is supported unless
        ``multimodal_tools_enabled`` is set.
        """
        if channel is None or not channel.multimodal_tools_enabled:
            return cls()

        if channel.tool_mode in (ToolMode.XML, ToolMode.JSON):
            return cls(
                supports_images=True,
                supports_documents=True,
                supports_history_multimodal=True,
            )

        if channel.supports_multimodal_function_response():
            return cls(
                supports_images=True,
                supports_documents=True,
                supports_history_multimodal=True,
            )

        return cls()


class ToolContext(BaseModel):
    """Execution context handed to a tool handler."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    call_id: str
    conversation_id: str | None = None
    abort_signal: Any = None
    multimodal_enabled: bool = False
    capability: MultimodalCapability = Field(default_factory=MultimodalCapability)
    tool_options: dict[str, Any] = Field(default_factory=dict)


class ToolDefinition(BaseModel):
    """Tool definition for LLM-facing registration."""

    name: str
    description: str
    parameters: dict[str, Any]


class BaseTool(ABC):
    """
    Common interface that every concrete tool must implement.

    ``execute`` returns a plain result dict. A dict with ``success: False``
    and ``error`` signals failure; a ``multimodal`` list of
    ``{mime_type, data, name}`` items carries binary output.
    """

    def __init__(self) -> None:
        self.name = self.get_name()
        self.description = self.get_description()

    @abstractmethod
    def get_name(self) -> str:
        """Return the tool name."""

    @abstractmethod
    def get_description(self) -> str:
        """Return the tool description used for prompting."""

    @abstractmethod
    def get_parameters(self) -> dict[str, Any]:
        """Return the JSON schema describing `execute` parameters."""

    @abstractmethod
    async def execute(
        self,
        args: dict[str, Any],
        context: ToolContext,
    ) -> dict[str, Any]:
        """
        Execute the tool.

        Args:
            args: Tool arguments from the model
            context: Call id, abort signal, channel capability

        Returns:
            Result payload shown to the model
        """

    def get_definition(self) -> ToolDefinition:
        """Construct a `ToolDefinition` for LLM-facing registration."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.get_parameters(),
        )


__all__ = ["BaseTool", "ToolContext", "ToolDefinition", "MultimodalCapability"]
