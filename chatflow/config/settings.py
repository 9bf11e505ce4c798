"""
Global settings from environment variables.

``ChatflowSettings`` is the default ``SettingsProvider``: the runtime only
talks to it through the accessor methods declared on the protocol, so a
host application can inject any other implementation.
"""

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SUMMARIZE_PROMPT = (
    "Please summarize the conversation above. Preserve the user's goals, "
    "decisions that were made, files and symbols that were touched, tool "
    "results that matter for the remaining work, and any open tasks. "
    "Write the summary so the conversation can continue from it alone."
)

DEFAULT_SUMMARY_PREFIX = "[Conversation Summary]"


class ModeConfig(BaseModel):
    """A named working mode. A non-empty ``tool_policy`` is a hard allowlist."""

    id: str
    name: str | None = None
    tool_policy: list[str] = Field(default_factory=list)


class SummarizeConfig(BaseModel):
    """Context summarization settings."""

    keep_recent_rounds: int = Field(default=2, ge=0)
    summarize_prompt: str = DEFAULT_SUMMARIZE_PROMPT
    summary_prefix: str = DEFAULT_SUMMARY_PREFIX
    use_separate_model: bool = False
    summarize_model: str | None = None


def _default_modes() -> dict[str, ModeConfig]:
    return {
        "code": ModeConfig(id="code", name="Code"),
        "plan": ModeConfig(id="plan", name="Plan"),
    }


@runtime_checkable
class SettingsProvider(Protocol):
    """Settings consumed by the agent loop and its collaborators."""

    def get_max_tool_iterations(self) -> int: ...

    def is_checkpoint_enabled(self, entity: str, phase: str) -> bool: ...

    def is_model_checkpoint_outer_layer_only(self) -> bool: ...

    def is_tool_auto_exec(self, tool_name: str) -> bool: ...

    def is_tool_enabled(self, tool_name: str) -> bool: ...

    def get_current_mode(self) -> ModeConfig | None: ...

    def get_max_concurrent_agents(self) -> int: ...

    def get_subagent_tool_name(self) -> str: ...

    def get_summarize_config(self) -> SummarizeConfig: ...


class ChatflowSettings(BaseSettings):
    """
    Global configuration loaded from environment variables.

    Environment variables should be prefixed with CHATFLOW_
    Example: CHATFLOW_MAX_TOOL_ITERATIONS=50, CHATFLOW_LOG_LEVEL=DEBUG
    Nested values are JSON, e.g. CHATFLOW_TOOL_AUTO_EXEC='{"delete_file": false}'
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Core settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Loop
    max_tool_iterations: int = Field(default=20, ge=-1)

    # Checkpoints
    checkpoint_before_user_message: bool = False
    checkpoint_after_user_message: bool = False
    checkpoint_before_model_message: bool = False
    checkpoint_after_model_message: bool = False
    checkpoint_model_outer_layer_only: bool = True
    checkpoint_tool_batches: bool = True

    # Tools
    tool_auto_exec: dict[str, bool] = Field(default_factory=dict)
    default_tool_auto_exec: bool = True
    tools_enabled: dict[str, bool] = Field(default_factory=dict)

    # Modes
    modes: dict[str, ModeConfig] = Field(default_factory=_default_modes)
    current_mode: str = "code"

    # Sub-agents
    max_concurrent_agents: int = Field(default=3, ge=-1)
    subagent_tool_name: str = "subagents"

    # Summarization
    summarize: SummarizeConfig = Field(default_factory=SummarizeConfig)

    # --- SettingsProvider accessors ---

    def get_max_tool_iterations(self) -> int:
        return self.max_tool_iterations

    def is_checkpoint_enabled(self, entity: str, phase: str) -> bool:
        """``entity`` is one of user_message, model_message, tool_batch."""
        if entity == "tool_batch":
            return self.checkpoint_tool_batches
        return bool(getattr(self, f"checkpoint_{phase}_{entity}", False))

    def is_model_checkpoint_outer_layer_only(self) -> bool:
        return self.checkpoint_model_outer_layer_only

    def is_tool_auto_exec(self, tool_name: str) -> bool:
        return self.tool_auto_exec.get(tool_name, self.default_tool_auto_exec)

    def is_tool_enabled(self, tool_name: str) -> bool:
        return self.tools_enabled.get(tool_name, True)

    def get_current_mode(self) -> ModeConfig | None:
        return self.modes.get(self.current_mode)

    def get_max_concurrent_agents(self) -> int:
        return self.max_concurrent_agents

    def get_subagent_tool_name(self) -> str:
        return self.subagent_tool_name

    def get_summarize_config(self) -> SummarizeConfig:
        return self.summarize


# Global settings instance (singleton)
settings = ChatflowSettings()


__all__ = [
    "ChatflowSettings",
    "ModeConfig",
    "SummarizeConfig",
    "SettingsProvider",
    "settings",
]
