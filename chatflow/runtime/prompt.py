"""
Prompt sources: the static system prompt and the per-turn dynamic context
(workspace tree, open diagnostics, pinned files, todo list...).
"""

from typing import Awaitable, Callable, Protocol, runtime_checkable


@runtime_checkable
class PromptProvider(Protocol):
    def get_system_prompt(self) -> str: ...

    async def get_dynamic_context(self, conversation_id: str) -> str: ...


class StaticPromptProvider:
    """Fixed system prompt with an optional dynamic context callback."""

    def __init__(
        self,
        system_prompt: str = "",
        dynamic_context: Callable[[str], Awaitable[str]] | None = None,
    ):
        self.system_prompt = system_prompt
        self._dynamic_context = dynamic_context

    def get_system_prompt(self) -> str:
        return self.system_prompt

    async def get_dynamic_context(self, conversation_id: str) -> str:
        if self._dynamic_context is None:
            return ""
        return await self._dynamic_context(conversation_id)


__all__ = ["PromptProvider", "StaticPromptProvider"]
