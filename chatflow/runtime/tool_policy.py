"""
Tool policy checks: global enable flags, mode allowlists and the plan-mode
path restriction for ``write_file``.
"""

from typing import Any

from chatflow.config.settings import SettingsProvider

PLAN_MODE_ID = "plan"
PLAN_DIR = ".limcode/plans/"
PLAN_WRITE_TOOL = "write_file"


def is_plan_path_allowed(path: str) -> bool:
    """
    Whether ``path`` may be written in plan mode.

    Allowed: relative ``.md`` files under ``.limcode/plans/``, optionally
    behind a single workspace-name prefix (``ws/.limcode/plans/x.md``).
    Absolute paths, ``..`` segments and directories are refused.
    """
    if not path:
        return False

    normalized = path.replace("\\", "/")
    if normalized.startswith("/") or _is_drive_path(normalized):
        return False
    if ".." in normalized:
        return False
    if normalized.endswith("/"):
        return False

    if not normalized.startswith(PLAN_DIR):
        head, sep, rest = normalized.partition("/")
        if not sep or not head or not rest.startswith(PLAN_DIR):
            return False
        normalized = rest

    relative = normalized[len(PLAN_DIR):]
    return bool(relative) and relative.endswith(".md")


def _is_drive_path(path: str) -> bool:
    """Windows drive-letter path such as ``C:/x``."""
    return len(path) >= 2 and path[1] == ":" and path[0].isalpha()


def _write_file_paths(args: dict[str, Any]) -> list[Any]:
    files = args.get("files")
    if isinstance(files, list):
        return [f.get("path") if isinstance(f, dict) else None for f in files]
    if "path" in args:
        return [args.get("path")]
    return [None]


class ToolPolicy:
    """Evaluates whether a tool call is refused before it runs."""

    def __init__(self, settings: SettingsProvider):
        self.settings = settings

    def rejection_reason(self, name: str, args: dict[str, Any] | None = None) -> str | None:
        """Return why the call is refused, or None if it may run."""
        if not self.settings.is_tool_enabled(name):
            return f"Tool '{name}' is disabled"

        mode = self.settings.get_current_mode()
        if mode is not None and mode.tool_policy and name not in mode.tool_policy:
            return f"Tool '{name}' is not allowed in mode '{mode.id}'"

        if mode is not None and mode.id == PLAN_MODE_ID and name == PLAN_WRITE_TOOL:
            paths = _write_file_paths(args or {})
            for path in paths:
                if not isinstance(path, str) or not is_plan_path_allowed(path):
                    return (
                        f"In plan mode '{PLAN_WRITE_TOOL}' may only write .md files "
                        f"under {PLAN_DIR} (got {path!r})"
                    )

        return None

    def is_rejected_by_name(self, name: str) -> bool:
        """Name-only check used before asking the user for confirmation."""
        if not self.settings.is_tool_enabled(name):
            return True
        mode = self.settings.get_current_mode()
        return bool(mode is not None and mode.tool_policy and name not in mode.tool_policy)


__all__ = ["ToolPolicy", "is_plan_path_allowed"]
