"""
MCP tool dispatch contract.

Tools exposed by MCP servers are addressed as ``mcp__{server}__{tool}``.
The transport (stdio, sse, streamable http) lives in the host.
"""

from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

MCP_TOOL_PREFIX = "mcp__"
MCP_NAME_SEPARATOR = "__"


class McpContentItem(BaseModel):
    type: Literal["text", "image", "resource"] = "text"
    text: str | None = None
    mime_type: str | None = None
    data: str | None = None


class McpCallResult(BaseModel):
    success: bool
    content: list[McpContentItem] = Field(default_factory=list)
    error: str | None = None


@runtime_checkable
class McpClient(Protocol):
    async def call_tool(
        self, server_id: str, tool_name: str, arguments: dict[str, Any]
    ) -> McpCallResult: ...


def is_mcp_tool(name: str) -> bool:
    return name.startswith(MCP_TOOL_PREFIX)


def split_mcp_tool_name(name: str) -> tuple[str, str] | None:
    """
    Split ``mcp__{server}__{tool}`` into (server, tool).

    The tool part may itself contain ``__``. Returns None for malformed names.
    """
    parts = name.split(MCP_NAME_SEPARATOR)
    if len(parts) < 3:
        return None
    return parts[1], MCP_NAME_SEPARATOR.join(parts[2:])


__all__ = [
    "McpCallResult",
    "McpClient",
    "McpContentItem",
    "MCP_TOOL_PREFIX",
    "is_mcp_tool",
    "split_mcp_tool_name",
]
