"""
ChatFlow - conversation-level entry points

Wraps AgentLoop with the operations a UI-facing handler needs: sending a
message, resuming after confirmation, retrying, editing, truncating and
manual summarization. Every streaming operation yields LoopEvents.
"""

from typing import AsyncIterator

from chatflow.config.schema import ChannelConfig
from chatflow.config.settings import SettingsProvider, settings as default_settings
from chatflow.domain import (
    CheckpointPhase,
    Content,
    ContentPart,
    ErrorCode,
    InlineData,
    LoopEvent,
    MessageRole,
    create_checkpoints_event,
    create_error_event,
)
from chatflow.providers.checkpoint import CheckpointBackend
from chatflow.providers.llm import Provider
from chatflow.providers.storage import ConversationStore, InMemoryConversationStore
from chatflow.providers.tools import McpClient, ToolRegistry
from chatflow.runtime.agent_loop import AgentLoop
from chatflow.runtime.checkpoint import CheckpointCoordinator
from chatflow.runtime.context_budget import ContextBudgetManager
from chatflow.runtime.control import AbortSignal
from chatflow.runtime.prompt import PromptProvider, StaticPromptProvider
from chatflow.runtime.summarizer import Summarizer, SummaryResult
from chatflow.runtime.tokens import TiktokenCounter, TokenCounter
from chatflow.runtime.tool_executor import ToolExecutor
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)


def build_user_parts(text: str, attachments: list[InlineData] | None = None) -> list[ContentPart]:
    parts: list[ContentPart] = []
    if text:
        parts.append(ContentPart(text=text))
    for attachment in attachments or []:
        parts.append(ContentPart(inline_data=attachment))
    return parts


class ChatFlow:
    """
    Conversation facade.

    Wires the loop collaborators from a provider, a tool registry and
    settings; any collaborator can be supplied explicitly instead.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry | None = None,
        store: ConversationStore | None = None,
        settings: SettingsProvider | None = None,
        checkpoint_backend: CheckpointBackend | None = None,
        mcp_client: McpClient | None = None,
        token_counter: TokenCounter | None = None,
        prompts: PromptProvider | None = None,
    ):
        self.provider = provider
        self.registry = registry if registry is not None else ToolRegistry()
        self.store = store if store is not None else InMemoryConversationStore()
        self.settings = settings if settings is not None else default_settings
        self.prompts = prompts if prompts is not None else StaticPromptProvider()

        self.checkpoints = CheckpointCoordinator(self.store, self.settings, checkpoint_backend)
        self.executor = ToolExecutor(self.registry, self.settings, self.checkpoints, mcp_client)
        if token_counter is None:
            token_counter = TiktokenCounter()
        self.budget = ContextBudgetManager(self.store, token_counter, self.prompts)
        self.summarizer = Summarizer(self.store, self.provider, self.settings)
        self.loop = AgentLoop(
            store=self.store,
            provider=self.provider,
            executor=self.executor,
            checkpoints=self.checkpoints,
            budget=self.budget,
            summarizer=self.summarizer,
            prompts=self.prompts,
            settings=self.settings,
        )

    @staticmethod
    def _disabled(conversation_id: str, channel: ChannelConfig) -> LoopEvent | None:
        if channel.enabled:
            return None
        return create_error_event(
            conversation_id,
            ErrorCode.CONFIG_DISABLED,
            f"Channel '{channel.id}' is disabled",
        )

    async def send_message(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        text: str,
        attachments: list[InlineData] | None = None,
        abort_signal: AbortSignal | None = None,
        model_override: str | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """Append a user message and run a new turn."""
        if (error := self._disabled(conversation_id, channel)) is not None:
            yield error
            return

        await self.store.create_conversation(conversation_id)

        checkpoint = await self.checkpoints.create_for_user_message(
            conversation_id, CheckpointPhase.BEFORE
        )
        if checkpoint is not None:
            yield create_checkpoints_event(conversation_id, [checkpoint])

        await self.store.add_content(
            conversation_id,
            Content(
                role=MessageRole.USER,
                parts=build_user_parts(text, attachments),
                is_user_input=True,
            ),
        )

        checkpoint = await self.checkpoints.create_for_user_message(
            conversation_id, CheckpointPhase.AFTER
        )
        if checkpoint is not None:
            yield create_checkpoints_event(conversation_id, [checkpoint])

        async for event in self.loop.run_turn(
            conversation_id, channel, abort_signal, new_turn=True, model_override=model_override
        ):
            yield event

    async def resume_after_confirmation(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        decisions: dict[str, bool],
        annotation: str | None = None,
        abort_signal: AbortSignal | None = None,
        model_override: str | None = None,
    ) -> AsyncIterator[LoopEvent]:
        if (error := self._disabled(conversation_id, channel)) is not None:
            yield error
            return

        await self.store.create_conversation(conversation_id)
        async for event in self.loop.resume_after_confirmation(
            conversation_id, channel, decisions, annotation, abort_signal, model_override
        ):
            yield event

    async def retry(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None = None,
        model_override: str | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """
        Re-enter the loop on the current history.

        Function calls left without responses by an interrupted turn are
        executed first so the provider never sees an unpaired call.
        """
        if (error := self._disabled(conversation_id, channel)) is not None:
            yield error
            return

        await self.store.create_conversation(conversation_id)
        history = await self.store.get_history_ref(conversation_id)
        if not history:
            yield create_error_event(
                conversation_id, ErrorCode.NO_HISTORY, "Conversation has no history"
            )
            return

        async for event in self.loop.execute_orphaned_calls(
            conversation_id, channel, abort_signal
        ):
            yield event

        history = await self.store.get_history_ref(conversation_id)
        first_message = len(history) == 1 and history[0].role == MessageRole.USER

        async for event in self.loop.run_turn(
            conversation_id,
            channel,
            abort_signal,
            new_turn=first_message,
            create_before_model_checkpoint=False,
            model_override=model_override,
        ):
            yield event

    async def edit_and_retry(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        message_index: int,
        new_text: str,
        attachments: list[InlineData] | None = None,
        abort_signal: AbortSignal | None = None,
        model_override: str | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """Replace a user message, drop everything after it and start a new turn."""
        if (error := self._disabled(conversation_id, channel)) is not None:
            yield error
            return

        await self.store.create_conversation(conversation_id)
        message = await self.store.get_message(conversation_id, message_index)
        if message is None:
            yield create_error_event(
                conversation_id,
                ErrorCode.MESSAGE_NOT_FOUND,
                f"Message {message_index} not found",
            )
            return
        if message.role != MessageRole.USER:
            yield create_error_event(
                conversation_id,
                ErrorCode.INVALID_MESSAGE_ROLE,
                f"Only user messages can be edited, got '{message.role.value}'",
            )
            return

        await self.checkpoints.delete_from_index(conversation_id, message_index)

        checkpoint = await self.checkpoints.create_for_user_message(
            conversation_id, CheckpointPhase.BEFORE, message_index
        )
        if checkpoint is not None:
            yield create_checkpoints_event(conversation_id, [checkpoint])

        await self.store.update_message(
            conversation_id,
            message_index,
            {
                "parts": build_user_parts(new_text, attachments),
                "is_user_input": True,
                "is_function_response": False,
                "token_count_by_channel": {},
                "estimated_token_count": None,
                "turn_dynamic_context": None,
            },
        )

        history = await self.store.get_history_ref(conversation_id)
        if message_index + 1 < len(history):
            await self.store.delete_to_message(conversation_id, message_index + 1)
        await self.budget.clear_trim_state(conversation_id)

        logger.info(
            "message_edited",
            conversation_id=conversation_id,
            message_index=message_index,
        )

        checkpoint = await self.checkpoints.create_for_user_message(
            conversation_id, CheckpointPhase.AFTER, message_index
        )
        if checkpoint is not None:
            yield create_checkpoints_event(conversation_id, [checkpoint])

        async for event in self.loop.run_turn(
            conversation_id, channel, abort_signal, new_turn=True, model_override=model_override
        ):
            yield event

    async def delete_to_message(self, conversation_id: str, target_index: int) -> int:
        """
        Truncate history at ``target_index``.

        Returns:
            Number of deleted messages
        """
        await self.store.create_conversation(conversation_id)
        await self.checkpoints.delete_from_index(conversation_id, target_index)
        deleted = await self.store.delete_to_message(conversation_id, target_index)
        await self.budget.clear_trim_state(conversation_id)
        logger.info(
            "history_truncated",
            conversation_id=conversation_id,
            target_index=target_index,
            deleted=deleted,
        )
        return deleted

    async def continue_with_annotation(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        annotation: str | None = None,
        abort_signal: AbortSignal | None = None,
        model_override: str | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """Append an optional annotation and continue the current turn."""
        if (error := self._disabled(conversation_id, channel)) is not None:
            yield error
            return

        await self.store.create_conversation(conversation_id)
        trimmed = (annotation or "").strip()
        if trimmed:
            await self.store.add_content(
                conversation_id,
                Content(role=MessageRole.USER, parts=[ContentPart(text=trimmed)]),
            )

        async for event in self.loop.run_turn(
            conversation_id,
            channel,
            abort_signal,
            new_turn=False,
            create_before_model_checkpoint=False,
            model_override=model_override,
        ):
            yield event

    async def summarize_context(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None = None,
    ) -> SummaryResult:
        """
        Summarize old rounds on demand.

        Raises:
            SummarizeError: when there is nothing to summarize or the
                provider call fails
        """
        result = await self.summarizer.summarize(conversation_id, channel, abort_signal)
        await self.budget.clear_trim_state(conversation_id)
        return result


__all__ = ["ChatFlow", "build_user_parts"]
