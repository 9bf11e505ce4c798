"""
Tools providers module.

This module contains the tool contracts and registry:
- BaseTool: Abstract base class for tools
- ToolContext: Per-call execution context
- ToolRegistry: Name -> tool lookup
- McpClient: MCP dispatch contract
"""

from .base import BaseTool, MultimodalCapability, ToolContext, ToolDefinition
from .mcp import McpCallResult, McpClient, McpContentItem, is_mcp_tool, split_mcp_tool_name
from .registry import ToolRegistry

__all__ = [
    "BaseTool",
    "MultimodalCapability",
    "ToolContext",
    "ToolDefinition",
    "McpCallResult",
    "McpClient",
    "McpContentItem",
    "is_mcp_tool",
    "split_mcp_tool_name",
    "ToolRegistry",
]
