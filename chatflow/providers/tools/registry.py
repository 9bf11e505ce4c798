"""
Tool Registry - name -> tool instance lookup.
"""

from chatflow.providers.tools.base import BaseTool, ToolDefinition
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """
    Registry of built-in tool instances.

    MCP tools are not registered here; they are dispatched by name prefix.
    """

    def __init__(self, tools: list[BaseTool] | None = None) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._tools:
            logger.warning("tool_overridden", tool_name=tool.name)
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def unregister(self, name: str) -> bool:
        """
        Unregister a tool.

        Returns:
            True if tool was unregistered, False if not found
        """
        if name in self._tools:
            del self._tools[name]
            logger.debug("tool_unregistered", tool_name=name)
            return True
        return False

    def get_tool(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[str]:
        return sorted(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        return [self._tools[name].get_definition() for name in self.list_tools()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


__all__ = ["ToolRegistry"]
