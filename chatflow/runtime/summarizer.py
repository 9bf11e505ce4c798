"""
Context summarization.

Collapses every round before the most recent ``keep_recent_rounds`` rounds
(counted after the last existing summary) into one synthetic user message
flagged ``is_summary``. Earlier summaries in the collapsed range are
deleted so only one summary stays live.
"""

from typing import Any

from pydantic import BaseModel

from chatflow.config.schema import ChannelConfig
from chatflow.config.settings import SettingsProvider
from chatflow.domain import Content, ContentPart, MessageRole, UsageMetadata
from chatflow.exceptions import MalformedResponseError, ProviderError, SummarizeError
from chatflow.providers.llm import GenerateRequest, Provider, StreamAccumulator
from chatflow.providers.storage import ConversationStore
from chatflow.runtime.context_budget import find_last_summary_index, identify_round_starts
from chatflow.runtime.control import AbortSignal
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)

# Internal bookkeeping keys that must not reach the provider
INTERNAL_RESPONSE_KEYS = ("diffContentId", "diffId", "diffs", "diff_content_id", "diff_id")


class SummaryResult(BaseModel):
    summary: Content
    insert_index: int
    summarized_message_count: int
    deleted_summaries: int = 0
    before_token_count: int | None = None
    after_token_count: int | None = None


def _clean_part(part: ContentPart) -> ContentPart | None:
    if part.is_thought():
        return None
    if part.function_response is not None:
        cleaned = part.model_copy(deep=True)
        for key in INTERNAL_RESPONSE_KEYS:
            cleaned.function_response.response.pop(key, None)
        return cleaned
    if part.function_call is not None:
        cleaned = part.model_copy(deep=True)
        cleaned.function_call.args.pop("rejected", None)
        return cleaned
    return part.model_copy(deep=True)


def clean_messages_for_summary(messages: list[Content]) -> list[Content]:
    """Strip thoughts and internal markers; messages left empty are dropped."""
    cleaned: list[Content] = []
    for message in messages:
        parts = [p for p in (_clean_part(part) for part in message.parts) if p is not None]
        if parts:
            cleaned.append(Content(role=message.role, parts=parts))
    return cleaned


class Summarizer:
    """Runs the summarization sub-conversation."""

    def __init__(
        self,
        store: ConversationStore,
        provider: Provider,
        settings: SettingsProvider,
    ):
        self.store = store
        self.provider = provider
        self.settings = settings

    async def summarize(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None = None,
        summarize_signal: AbortSignal | None = None,
    ) -> SummaryResult:
        """
        Summarize old rounds in place.

        ``summarize_signal`` cancels only this summarization; ``abort_signal``
        is the main-turn signal.

        Raises:
            SummarizeError: with code NOT_ENOUGH_ROUNDS, NO_MESSAGES_TO_SUMMARIZE,
                ABORTED, PROVIDER_ERROR or EMPTY_SUMMARY
        """
        config = self.settings.get_summarize_config()
        keep = config.keep_recent_rounds
        history = await self.store.get_history_ref(conversation_id)
        last_summary = find_last_summary_index(history)
        history_start = last_summary + 1
        round_starts = identify_round_starts(history, history_start)

        if len(round_starts) <= keep:
            raise SummarizeError(
                f"Not enough rounds to summarize: {len(round_starts)} <= {keep}",
                code="NOT_ENOUGH_ROUNDS",
            )

        end_index = round_starts[len(round_starts) - keep] if keep > 0 else len(history)
        to_summarize = history[:end_index]
        if not to_summarize:
            raise SummarizeError("No messages to summarize", code="NO_MESSAGES_TO_SUMMARIZE")

        request_history = clean_messages_for_summary(to_summarize)
        request_history.append(
            Content(role=MessageRole.USER, parts=[ContentPart(text=config.summarize_prompt)])
        )
        model_override = (
            config.summarize_model if config.use_separate_model and config.summarize_model else None
        )

        logger.info(
            "summarize_started",
            conversation_id=conversation_id,
            rounds=len(round_starts),
            rounds_summarized=len(round_starts) - keep,
            messages=len(to_summarize),
            model_override=model_override,
        )

        signal = AbortSignal.any(abort_signal, summarize_signal)
        try:
            response_content = await self._generate(
                conversation_id, channel, request_history, model_override, signal
            )
        finally:
            signal.release()

        summary_text = "\n".join(
            p.text for p in response_content.parts if p.is_text() and p.text
        ).strip()
        if not summary_text:
            raise SummarizeError("Model returned an empty summary", code="EMPTY_SUMMARY")

        usage = response_content.usage_metadata
        before_tokens = usage.prompt_token_count if usage else None
        after_tokens = usage.candidates_token_count if usage else None

        current = await self.store.get_history_ref(conversation_id)
        stale = [i for i in range(min(end_index, len(current))) if current[i].is_summary]
        for index in reversed(stale):
            await self.store.delete_message(conversation_id, index)
        insert_index = end_index - len(stale)

        summary = Content(
            role=MessageRole.USER,
            parts=[ContentPart(text=f"{config.summary_prefix}\n\n{summary_text}")],
            is_summary=True,
            summarized_message_count=len(to_summarize),
            usage_metadata=UsageMetadata(
                prompt_token_count=before_tokens,
                candidates_token_count=after_tokens,
            ),
        )
        await self.store.insert_content(conversation_id, insert_index, summary)

        logger.info(
            "summarize_completed",
            conversation_id=conversation_id,
            insert_index=insert_index,
            summarized_messages=len(to_summarize),
            deleted_summaries=len(stale),
            before_tokens=before_tokens,
            after_tokens=after_tokens,
        )
        return SummaryResult(
            summary=summary,
            insert_index=insert_index,
            summarized_message_count=len(to_summarize),
            deleted_summaries=len(stale),
            before_token_count=before_tokens,
            after_token_count=after_tokens,
        )

    async def _generate(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        history: list[Content],
        model_override: str | None,
        signal: AbortSignal,
    ) -> Content:
        request = GenerateRequest(
            conversation_id=conversation_id,
            channel=channel,
            history=history,
            model_override=model_override,
            skip_tools=True,
        )
        try:
            response: Any = await self.provider.generate(request, signal)
            if isinstance(response, Content):
                content = response
            elif hasattr(response, "__aiter__"):
                accumulator = StreamAccumulator()
                async for chunk in response:
                    if signal.is_aborted():
                        raise SummarizeError("Summarization aborted", code="ABORTED")
                    accumulator.add(chunk)
                content = accumulator.get_content()
            else:
                raise MalformedResponseError(
                    f"Provider returned {type(response).__name__}, expected Content or stream"
                )
        except ProviderError as e:
            if e.cancelled or signal.is_aborted():
                raise SummarizeError("Summarization aborted", code="ABORTED") from e
            raise SummarizeError(e.message or str(e), code="PROVIDER_ERROR") from e

        if signal.is_aborted():
            raise SummarizeError("Summarization aborted", code="ABORTED")
        return content


__all__ = ["Summarizer", "SummaryResult", "clean_messages_for_summary"]
