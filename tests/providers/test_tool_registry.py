from chatflow.providers.tools import ToolRegistry, is_mcp_tool, split_mcp_tool_name

from fakes import RecordingTool


def test_register_and_lookup():
    registry = ToolRegistry([RecordingTool("read_file"), RecordingTool("bash")])

    assert registry.list_tools() == ["bash", "read_file"]
    assert "bash" in registry
    assert len(registry) == 2
    assert registry.get_tool("missing") is None


def test_register_overrides_same_name():
    first, second = RecordingTool("bash"), RecordingTool("bash")
    registry = ToolRegistry([first])

    registry.register(second)

    assert registry.get_tool("bash") is second
    assert len(registry) == 1


def test_unregister():
    registry = ToolRegistry([RecordingTool("bash")])

    assert registry.unregister("bash")
    assert not registry.unregister("bash")


def test_definitions():
    registry = ToolRegistry([RecordingTool("read_file")])

    [definition] = registry.get_definitions()

    assert definition.name == "read_file"
    assert definition.description == "read_file test tool"
    assert definition.parameters["type"] == "object"


def test_mcp_names():
    assert is_mcp_tool("mcp__fs__read")
    assert not is_mcp_tool("read_file")
    assert split_mcp_tool_name("mcp__fs__read__all") == ("fs", "read__all")
    assert split_mcp_tool_name("mcp__fs") is None
