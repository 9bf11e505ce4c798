"""
Configuration: environment settings and channel schema.
"""

from chatflow.config.schema import (
    ChannelConfig,
    ChannelType,
    HistoryOptions,
    ModelInfo,
    ToolMode,
    calculate_threshold,
)
from chatflow.config.settings import (
    ChatflowSettings,
    ModeConfig,
    SettingsProvider,
    SummarizeConfig,
    settings,
)

__all__ = [
    "ChannelConfig",
    "ChannelType",
    "HistoryOptions",
    "ModelInfo",
    "ToolMode",
    "calculate_threshold",
    "ChatflowSettings",
    "ModeConfig",
    "SettingsProvider",
    "SummarizeConfig",
    "settings",
]
