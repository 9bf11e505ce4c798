"""
Context budgeting.

Decides which part of the history is sent to the provider so that system
prompt + dynamic context + history stays under the channel threshold.

Two mutually exclusive strategies:

- auto-summarize: history after the last summary is returned untouched and
  ``needs_auto_summarize`` is raised when it does not fit;
- trimming: whole rounds after the last summary are dropped until the
  estimate falls below ``threshold - extra_cut``; the chosen start index is
  persisted in conversation metadata and reused while it still fits.

Token totals are accumulated per message (cached counts for user messages,
usage metadata for model messages) rather than taken from the provider's
cumulative prompt count, so the decision does not oscillate.
"""

import asyncio
from typing import Any

from pydantic import BaseModel, Field

from chatflow.config.schema import ChannelConfig, HistoryOptions
from chatflow.domain import Content, MessageRole
from chatflow.providers.storage import ConversationStore
from chatflow.runtime.prompt import PromptProvider
from chatflow.runtime.tokens import TokenCounter
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)

TRIM_STATE_KEY = "trimState"


class BudgetResult(BaseModel):
    history: list[Content] = Field(default_factory=list)
    trim_start_index: int = 0
    needs_auto_summarize: bool = False
    estimated_tokens: int = 0
    threshold: int | None = None


class RoundTokens(BaseModel):
    start_index: int
    end_index: int
    # prompt tokens + every message from the effective start to the round end
    cumulative_tokens: int


def find_last_summary_index(history: list[Content]) -> int:
    for index in range(len(history) - 1, -1, -1):
        if history[index].is_summary:
            return index
    return -1


def identify_round_starts(history: list[Content], start: int = 0) -> list[int]:
    """Indices of round-opening user messages at or after ``start``."""
    return [i for i in range(start, len(history)) if history[i].is_round_start()]


class ContextBudgetManager:
    """Computes the provider-bound history slice for one iteration."""

    def __init__(
        self,
        store: ConversationStore,
        token_counter: TokenCounter,
        prompts: PromptProvider,
    ):
        self.store = store
        self.token_counter = token_counter
        self.prompts = prompts

    async def clear_trim_state(self, conversation_id: str) -> None:
        """Invalidate the cached trim decision."""
        await self.store.set_custom_metadata(conversation_id, TRIM_STATE_KEY, None)

    async def _get_trim_start(self, conversation_id: str) -> int | None:
        state = await self.store.get_custom_metadata(conversation_id, TRIM_STATE_KEY)
        if isinstance(state, dict) and isinstance(state.get("trim_start_index"), int):
            return state["trim_start_index"]
        return None

    async def _save_trim_start(self, conversation_id: str, index: int) -> None:
        await self.store.set_custom_metadata(
            conversation_id, TRIM_STATE_KEY, {"trim_start_index": index}
        )

    async def prepare(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        history_options: HistoryOptions | None = None,
        dynamic_context: str | None = None,
        model_override: str | None = None,
    ) -> BudgetResult:
        history_options = history_options or channel.history
        full_history = await self.store.get_history_ref(conversation_id)
        if not full_history:
            return BudgetResult()

        channel_type = channel.type.value
        last_summary = find_last_summary_index(full_history)
        summary_start = max(last_summary, 0)

        saved_start = await self._get_trim_start(conversation_id)
        if saved_start is not None and saved_start >= len(full_history):
            await self.clear_trim_state(conversation_id)
            saved_start = None

        if dynamic_context is None:
            dynamic_context = await self.prompts.get_dynamic_context(conversation_id)

        missing = [
            i
            for i, message in enumerate(full_history)
            if message.role == MessageRole.USER and channel_type not in message.token_count_by_channel
        ]
        prompt_counts, _ = await asyncio.gather(
            self.token_counter.count_text_tokens_batch(
                [self.prompts.get_system_prompt(), dynamic_context or ""], channel_type
            ),
            self._precount_messages(conversation_id, channel_type, missing),
        )
        prompt_tokens = sum(prompt_counts)
        full_history = await self.store.get_history_ref(conversation_id)

        if not channel.context_threshold_enabled and not channel.auto_summarize_enabled:
            return await self._slice(conversation_id, summary_start, history_options)

        threshold = channel.resolve_threshold(model_override)
        total, rounds = self._accumulate(
            full_history, summary_start, channel_type, history_options, prompt_tokens
        )

        if channel.auto_summarize_enabled:
            needs = total > threshold
            logger.info(
                "context_budget_prepared",
                conversation_id=conversation_id,
                strategy="auto_summarize",
                estimated_tokens=total,
                threshold=threshold,
                needs_auto_summarize=needs,
            )
            result = await self._slice(conversation_id, summary_start, history_options)
            result.needs_auto_summarize = needs
            result.estimated_tokens = total
            result.threshold = threshold
            return result

        # Trimming mode
        if total <= threshold:
            await self.clear_trim_state(conversation_id)
            logger.info(
                "context_budget_prepared",
                conversation_id=conversation_id,
                strategy="trim",
                estimated_tokens=total,
                threshold=threshold,
                trim_start_index=summary_start,
            )
            result = await self._slice(conversation_id, summary_start, history_options)
            result.estimated_tokens = total
            result.threshold = threshold
            return result

        effective_start = summary_start
        if saved_start is not None and saved_start > summary_start:
            saved_start = self._align_to_round_start(full_history, saved_start)
            if saved_start is not None:
                saved_total, saved_rounds = self._accumulate(
                    full_history, saved_start, channel_type, history_options, prompt_tokens
                )
                if saved_total <= threshold:
                    logger.info(
                        "context_budget_prepared",
                        conversation_id=conversation_id,
                        strategy="trim",
                        estimated_tokens=saved_total,
                        threshold=threshold,
                        trim_start_index=saved_start,
                        reused_trim_state=True,
                    )
                    result = await self._slice(conversation_id, saved_start, history_options)
                    result.estimated_tokens = saved_total
                    result.threshold = threshold
                    return result
                effective_start, total, rounds = saved_start, saved_total, saved_rounds

        return await self._trim(
            conversation_id,
            channel,
            history_options,
            model_override,
            effective_start,
            total,
            prompt_tokens,
            rounds,
            threshold,
        )

    async def _trim(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        history_options: HistoryOptions,
        model_override: str | None,
        effective_start: int,
        total: int,
        prompt_tokens: int,
        rounds: list[RoundTokens],
        threshold: int,
    ) -> BudgetResult:
        target = max(0, threshold - channel.resolve_extra_cut(model_override))

        rounds_to_skip = 0
        remaining = total
        if len(rounds) > 1:
            for k in range(1, len(rounds)):
                skipped = rounds[k - 1].cumulative_tokens - prompt_tokens
                if total - skipped <= target:
                    rounds_to_skip = k
                    break
            if rounds_to_skip == 0 and total > target:
                # Keep the current round no matter what
                rounds_to_skip = len(rounds) - 1
            if rounds_to_skip:
                remaining = total - (rounds[rounds_to_skip - 1].cumulative_tokens - prompt_tokens)

        if rounds_to_skip == 0:
            logger.info(
                "context_budget_prepared",
                conversation_id=conversation_id,
                strategy="trim",
                estimated_tokens=total,
                threshold=threshold,
                target_tokens=target,
                trim_start_index=effective_start,
                rounds=len(rounds),
            )
            result = await self._slice(conversation_id, effective_start, history_options)
            result.estimated_tokens = total
            result.threshold = threshold
            return result

        trim_start = rounds[rounds_to_skip].start_index
        await self._save_trim_start(conversation_id, trim_start)
        logger.info(
            "context_budget_prepared",
            conversation_id=conversation_id,
            strategy="trim",
            estimated_tokens=remaining,
            threshold=threshold,
            target_tokens=target,
            trim_start_index=trim_start,
            rounds_skipped=rounds_to_skip,
        )
        result = await self._slice(conversation_id, trim_start, history_options)
        result.estimated_tokens = remaining
        result.threshold = threshold
        return result

    async def _slice(
        self, conversation_id: str, start: int, options: HistoryOptions
    ) -> BudgetResult:
        history = await self.store.get_history_for_api(conversation_id, start, options)
        return BudgetResult(history=history, trim_start_index=start)

    @staticmethod
    def _align_to_round_start(history: list[Content], index: int) -> int | None:
        """Move ``index`` forward to the next round start so no call/response pair is split."""
        starts = identify_round_starts(history, index)
        return starts[0] if starts else None

    async def _precount_messages(
        self, conversation_id: str, channel_type: str, indices: list[int]
    ) -> None:
        if not indices:
            return
        history = await self.store.get_history_ref(conversation_id)
        messages = [history[i] for i in indices]
        counts = await asyncio.gather(
            *(self._count_message(m, channel_type) for m in messages)
        )
        for index, message, count in zip(indices, messages, counts):
            by_channel = dict(message.token_count_by_channel)
            by_channel[channel_type] = count
            await self.store.update_message(
                conversation_id,
                index,
                {"token_count_by_channel": by_channel, "estimated_token_count": count},
            )

    async def _count_message(self, message: Content, channel_type: str) -> int:
        if all(p.text is not None for p in message.parts):
            counts = await self.token_counter.count_text_tokens_batch(
                [p.text for p in message.parts], channel_type
            )
            return max(1, sum(counts))
        return self.token_counter.estimate_message_tokens(message)

    def _accumulate(
        self,
        history: list[Content],
        start: int,
        channel_type: str,
        options: HistoryOptions,
        prompt_tokens: int,
    ) -> tuple[int, list[RoundTokens]]:
        round_starts = identify_round_starts(history)
        current_round_start = round_starts[-1] if round_starts else -1

        thought_min = 0
        thought_max = current_round_start
        if options.history_thinking_rounds == 0:
            thought_min, thought_max = len(history), -1
        elif options.history_thinking_rounds > 0 and len(round_starts) > 1:
            skip = len(round_starts) - 1 - options.history_thinking_rounds
            if 0 < skip < len(round_starts):
                thought_min = round_starts[skip]

        total = prompt_tokens
        rounds: list[RoundTokens] = []
        round_start = -1

        for index in range(start, len(history)):
            message = history[index]
            if message.role == MessageRole.USER:
                if not message.is_function_response:
                    if round_start != -1:
                        rounds.append(
                            RoundTokens(start_index=round_start, end_index=index, cumulative_tokens=total)
                        )
                    round_start = index
                total += self._user_tokens(message, channel_type)
            else:
                if index >= current_round_start:
                    include_thoughts = options.send_current_thoughts
                else:
                    include_thoughts = (
                        options.send_history_thoughts and thought_min <= index < thought_max
                    )
                total += self._model_tokens(message, include_thoughts)

        if round_start != -1:
            rounds.append(
                RoundTokens(start_index=round_start, end_index=len(history), cumulative_tokens=total)
            )
        return total, rounds

    def _user_tokens(self, message: Content, channel_type: str) -> int:
        count: Any = message.token_count_by_channel.get(channel_type)
        if count is None:
            count = message.estimated_token_count
        if count is None:
            count = self.token_counter.estimate_message_tokens(message)
        return max(0, int(count))

    def _model_tokens(self, message: Content, include_thoughts: bool) -> int:
        usage = message.usage_metadata
        if usage is None:
            return self.token_counter.estimate_message_tokens(message)

        candidates = max(0, usage.candidates_token_count or 0)
        thoughts = max(0, usage.thoughts_token_count or 0)
        if usage.prompt_token_count is not None and usage.total_token_count is not None:
            output = max(0, usage.total_token_count - usage.prompt_token_count)
            thoughts = min(thoughts, output)
            candidates = max(0, output - thoughts)

        has_thought = any(p.is_thought() for p in message.parts)
        return candidates + (thoughts if include_thoughts and has_thought else 0)


__all__ = [
    "BudgetResult",
    "ContextBudgetManager",
    "TRIM_STATE_KEY",
    "find_last_summary_index",
    "identify_round_starts",
]
