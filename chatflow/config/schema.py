"""
Channel (provider) configuration schema.

A channel describes one configured LLM endpoint: its vendor type, model
list, how tools are encoded in prompts, and how the context window is
managed.
"""

import math
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_MAX_CONTEXT_TOKENS = 128000
DEFAULT_THRESHOLD_RATIO = 0.8


class ChannelType(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OPENAI_RESPONSES = "openai-responses"
    CUSTOM = "custom"


class ToolMode(str, Enum):
    """How tool calls are encoded in provider traffic."""

    FUNCTION_CALL = "function_call"
    XML = "xml"
    JSON = "json"


# Channel types that accept images/documents inside function responses
MULTIMODAL_FUNCTION_RESPONSE_CHANNELS = frozenset(
    {ChannelType.GEMINI, ChannelType.ANTHROPIC}
)


class ModelInfo(BaseModel):
    id: str
    name: str | None = None
    context_window: int | None = None


class HistoryOptions(BaseModel):
    """Controls which thought parts are sent back to the provider."""

    send_history_thoughts: bool = False
    send_current_thoughts: bool = False
    # -1 = all history rounds, 0 = none, N = last N rounds
    history_thinking_rounds: int = -1


class ChannelConfig(BaseModel):
    """Configuration of one LLM channel."""

    id: str
    type: ChannelType = ChannelType.CUSTOM
    enabled: bool = True
    model: str | None = None
    models: list[ModelInfo] = Field(default_factory=list)

    tool_mode: ToolMode = ToolMode.FUNCTION_CALL
    multimodal_tools_enabled: bool = False

    max_context_tokens: int | None = None
    context_threshold_enabled: bool = False
    context_threshold: int | str = "80%"
    context_trim_extra_cut: int | str = 0
    auto_summarize_enabled: bool = False

    history: HistoryOptions = Field(default_factory=HistoryOptions)

    def resolve_max_context_tokens(self, model_override: str | None = None) -> int:
        """
        Resolve the context window.

        Order: explicit ``max_context_tokens``, then the ``context_window`` of
        the effective model (override first), then the default.
        """
        if self.max_context_tokens and self.max_context_tokens > 0:
            return self.max_context_tokens

        model_id = (model_override or "").strip() or (self.model or "").strip()
        if model_id:
            for info in self.models:
                if info.id == model_id and info.context_window and info.context_window > 0:
                    return info.context_window

        return DEFAULT_MAX_CONTEXT_TOKENS

    def resolve_threshold(self, model_override: str | None = None) -> int:
        return calculate_threshold(
            self.context_threshold, self.resolve_max_context_tokens(model_override)
        )

    def resolve_extra_cut(self, model_override: str | None = None) -> int:
        return calculate_threshold(
            self.context_trim_extra_cut, self.resolve_max_context_tokens(model_override)
        )

    def supports_multimodal_function_response(self) -> bool:
        return self.type in MULTIMODAL_FUNCTION_RESPONSE_CHANNELS


def calculate_threshold(threshold: int | str, max_context_tokens: int) -> int:
    """
    Resolve a threshold value.

    Integers are absolute. ``"NN%"`` is a percentage of the context window
    (0 < NN <= 100). Anything else falls back to 80%.
    """
    if isinstance(threshold, int) and not isinstance(threshold, bool):
        return threshold

    if isinstance(threshold, str) and threshold.endswith("%"):
        try:
            percent = float(threshold[:-1])
        except ValueError:
            percent = math.nan
        if 0 < percent <= 100:
            return int(max_context_tokens * percent / 100)

    return int(max_context_tokens * DEFAULT_THRESHOLD_RATIO)


__all__ = [
    "ChannelType",
    "ToolMode",
    "ModelInfo",
    "HistoryOptions",
    "ChannelConfig",
    "calculate_threshold",
    "DEFAULT_MAX_CONTEXT_TOKENS",
]
