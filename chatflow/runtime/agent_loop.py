"""
AgentLoop - tool-calling conversation loop

Responsibilities:
- Call the provider with the budgeted history
- Persist model messages and function responses
- Split tool calls into an auto-executed prefix and a confirmation point
- Trigger auto-summarization when the budget asks for it
- Emit LoopEvents for every observable step

Does NOT handle:
- Channel lookup or user-message creation (ChatFlow)
- Tool dispatch details (ToolExecutor)

A turn suspended for confirmation keeps no in-memory state: resuming
rebuilds the pending calls from conversation history.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from pydantic import BaseModel, Field

from chatflow.config.schema import ChannelConfig
from chatflow.config.settings import SettingsProvider
from chatflow.domain import (
    AutoSummaryPhase,
    Checkpoint,
    CheckpointPhase,
    Content,
    ContentPart,
    ErrorCode,
    FunctionCall,
    FunctionResponse,
    LoopEvent,
    LoopEventType,
    LoopState,
    MessageRole,
    ToolExecutionResult,
    ToolStatus,
    create_auto_summary_event,
    create_auto_summary_status_event,
    create_awaiting_confirmation_event,
    create_cancelled_event,
    create_checkpoints_event,
    create_chunk_event,
    create_complete_event,
    create_error_event,
    create_tool_iteration_event,
    create_tool_status_event,
    create_tools_executing_event,
)
from chatflow.exceptions import MalformedResponseError, ProviderError, SummarizeError
from chatflow.providers.llm import GenerateRequest, Provider, StreamAccumulator
from chatflow.providers.storage import ConversationStore
from chatflow.runtime.checkpoint import CheckpointCoordinator
from chatflow.runtime.context_budget import ContextBudgetManager
from chatflow.runtime.control import AbortSignal
from chatflow.runtime.prompt import PromptProvider
from chatflow.runtime.summarizer import Summarizer
from chatflow.runtime.tool_call_parser import ToolCallParser
from chatflow.runtime.tool_executor import BatchResult, ToolExecutor
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)

USER_REJECTED_ERROR = "Tool execution was rejected by user"


class LoopOutcome(BaseModel):
    """Final state of a turn driven by ``run_to_completion``."""

    state: LoopState
    content: Content | None = None
    pending_calls: list[FunctionCall] = Field(default_factory=list)
    error_code: ErrorCode | None = None
    error_message: str | None = None


@dataclass
class _ModelCall:
    content: Content | None = None
    cancelled: bool = False
    error: str | None = None


@dataclass
class _ResumeBatch:
    """Results gathered while draining the pending queue."""

    response_parts: list[ContentPart] = field(default_factory=list)
    attachments: list[ContentPart] = field(default_factory=list)
    results: list[ToolExecutionResult] = field(default_factory=list)
    checkpoints: list[Checkpoint] = field(default_factory=list)

    def merge(self, batch: BatchResult) -> None:
        self.response_parts.extend(batch.response_parts)
        self.attachments.extend(batch.multimodal_attachments)
        self.results.extend(batch.results)
        self.checkpoints.extend(batch.checkpoints)

    @property
    def has_cancelled(self) -> bool:
        return any(r.cancelled for r in self.results)

    @property
    def has_halting(self) -> bool:
        return any(r.cancelled or r.requires_confirmation for r in self.results)


def find_turn_start_index(history: list[Content]) -> int:
    """Index of the message that opened the current turn, -1 if none."""
    for index in range(len(history) - 1, -1, -1):
        if history[index].is_user_input:
            return index
    for index in range(len(history) - 1, -1, -1):
        if history[index].is_round_start() and not history[index].is_summary:
            return index
    return -1


class AgentLoop:
    """
    Tool-calling loop over one conversation.

    Only one turn per conversation may run at a time; the loop is the sole
    writer of history while it runs.
    """

    def __init__(
        self,
        store: ConversationStore,
        provider: Provider,
        executor: ToolExecutor,
        checkpoints: CheckpointCoordinator,
        budget: ContextBudgetManager,
        summarizer: Summarizer,
        prompts: PromptProvider,
        settings: SettingsProvider,
        parser: ToolCallParser | None = None,
    ):
        self.store = store
        self.provider = provider
        self.executor = executor
        self.checkpoints = checkpoints
        self.budget = budget
        self.summarizer = summarizer
        self.prompts = prompts
        self.settings = settings
        self.parser = parser if parser is not None else ToolCallParser()

    # --- Turn entry points ---

    async def run_turn(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None = None,
        *,
        new_turn: bool = True,
        create_before_model_checkpoint: bool = True,
        model_override: str | None = None,
        summarize_signal: AbortSignal | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """
        Run iterations until the model answers without tool calls.

        Args:
            conversation_id: Conversation to continue
            channel: Active channel configuration
            abort_signal: Cancels the whole turn
            new_turn: Regenerate the dynamic context instead of reusing the
                one cached on the turn's first user message
            create_before_model_checkpoint: Request "before model" checkpoints
            model_override: Model id used instead of ``channel.model``
            summarize_signal: Cancels only an automatic summarization

        Yields:
            LoopEvent: ends with exactly one of complete, awaiting_confirmation,
            tool_iteration (halted batch), cancelled or error
        """
        dynamic_context = await self._resolve_dynamic_context(conversation_id, new_turn)
        max_iterations = self.settings.get_max_tool_iterations()
        iteration = 0
        summarized = False

        logger.info(
            "turn_started",
            conversation_id=conversation_id,
            new_turn=new_turn,
            max_iterations=max_iterations,
            channel_type=channel.type.value,
        )

        while max_iterations == -1 or iteration < max_iterations:
            iteration += 1

            if abort_signal is not None and abort_signal.is_aborted():
                logger.info("turn_aborted", conversation_id=conversation_id, iteration=iteration)
                yield create_cancelled_event(conversation_id)
                return

            if create_before_model_checkpoint and not summarized:
                checkpoint = await self.checkpoints.create_for_model_message(
                    conversation_id, CheckpointPhase.BEFORE, iteration
                )
                if checkpoint is not None:
                    yield create_checkpoints_event(conversation_id, [checkpoint])

            budget = await self.budget.prepare(
                conversation_id,
                channel,
                channel.history,
                dynamic_context,
                model_override,
            )

            if budget.needs_auto_summarize and not summarized:
                summarized = True
                logger.info(
                    "auto_summarize_triggered",
                    conversation_id=conversation_id,
                    estimated_tokens=budget.estimated_tokens,
                    threshold=budget.threshold,
                )
                yield create_auto_summary_status_event(conversation_id, AutoSummaryPhase.STARTED)
                try:
                    result = await self.summarizer.summarize(
                        conversation_id, channel, abort_signal, summarize_signal
                    )
                except SummarizeError as e:
                    logger.warning(
                        "auto_summarize_failed",
                        conversation_id=conversation_id,
                        code=e.code,
                        error=e.message,
                    )
                    yield create_auto_summary_status_event(
                        conversation_id, AutoSummaryPhase.FAILED, e.message
                    )
                    if abort_signal is not None and abort_signal.is_aborted():
                        yield create_cancelled_event(conversation_id)
                        return
                else:
                    await self.budget.clear_trim_state(conversation_id)
                    await self._store_dynamic_context(conversation_id, dynamic_context)
                    yield create_auto_summary_event(
                        conversation_id, result.summary, result.insert_index
                    )
                    yield create_auto_summary_status_event(
                        conversation_id, AutoSummaryPhase.COMPLETED
                    )
                    # Restart this iteration against the summarized history
                    iteration -= 1
                    continue

            summarized = False

            request = GenerateRequest(
                conversation_id=conversation_id,
                channel=channel,
                history=budget.history,
                system_prompt=self.prompts.get_system_prompt(),
                dynamic_context=dynamic_context,
                model_override=model_override,
            )
            call = _ModelCall()
            async for event in self._call_model(request, abort_signal, call):
                yield event

            if call.error is not None:
                yield create_error_event(conversation_id, ErrorCode.PROVIDER_ERROR, call.error)
                return

            content = call.content
            if call.cancelled:
                if content is not None and content.parts:
                    self.parser.normalize(content)
                    self.parser.ensure_ids(content)
                    await self.store.add_content(conversation_id, content)
                    logger.info(
                        "partial_response_persisted",
                        conversation_id=conversation_id,
                        parts=len(content.parts),
                    )
                yield create_cancelled_event(conversation_id, content)
                return

            if not content.parts:
                # Empty replies are never stored
                logger.warning(
                    "empty_model_response", conversation_id=conversation_id, iteration=iteration
                )
                yield create_complete_event(conversation_id, content, [])
                return

            self.parser.normalize(content)
            self.parser.ensure_ids(content)
            message_index = await self.store.add_content(conversation_id, content)

            calls = self.parser.extract(content)
            if not calls:
                checkpoints: list[Checkpoint] = []
                checkpoint = await self.checkpoints.create_for_model_message(
                    conversation_id, CheckpointPhase.AFTER, iteration
                )
                if checkpoint is not None:
                    checkpoints.append(checkpoint)
                logger.info(
                    "turn_completed", conversation_id=conversation_id, iterations=iteration
                )
                yield create_complete_event(conversation_id, content, checkpoints)
                return

            auto_calls, confirm_call = self._partition(calls)
            logger.debug(
                "tool_calls_partitioned",
                conversation_id=conversation_id,
                iteration=iteration,
                auto=len(auto_calls),
                confirmation=confirm_call.name if confirm_call else None,
            )

            batch = BatchResult()
            if auto_calls:
                async for item in self._execute(
                    auto_calls, conversation_id, message_index, channel, abort_signal
                ):
                    if isinstance(item, BatchResult):
                        batch = item
                    else:
                        yield item
                await self._append_responses(
                    conversation_id, batch.multimodal_attachments, batch.response_parts
                )

            aborted = abort_signal is not None and abort_signal.is_aborted()

            if confirm_call is not None and not aborted and not batch.has_cancelled:
                logger.info(
                    "awaiting_confirmation",
                    conversation_id=conversation_id,
                    tool_name=confirm_call.name,
                    tool_call_id=confirm_call.id,
                )
                yield create_awaiting_confirmation_event(
                    conversation_id, [confirm_call], content, batch.results, batch.checkpoints
                )
                return

            yield create_tool_iteration_event(
                conversation_id, content, batch.results, batch.checkpoints, iteration=iteration
            )

            if aborted:
                yield create_cancelled_event(conversation_id)
                return
            if batch.has_halting:
                logger.info(
                    "turn_halted_after_tools",
                    conversation_id=conversation_id,
                    iteration=iteration,
                    cancelled=batch.has_cancelled,
                )
                return

        logger.warning(
            "max_tool_iterations_reached",
            conversation_id=conversation_id,
            max_iterations=max_iterations,
        )
        yield create_error_event(
            conversation_id,
            ErrorCode.MAX_TOOL_ITERATIONS,
            f"Reached the maximum number of tool iterations ({max_iterations})",
        )

    async def resume_after_confirmation(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        decisions: dict[str, bool],
        annotation: str | None = None,
        abort_signal: AbortSignal | None = None,
        model_override: str | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """
        Resume a turn paused for confirmation.

        Pending calls are rebuilt from history: the last model message with
        function calls, minus the calls that already have a response. They
        are drained in order; accepted calls run, declined ones get a
        rejection result. Draining stops before the next call that needs
        confirmation and has no decision, which pauses the turn again.

        Args:
            decisions: tool call id -> accepted. A missing decision for the
                paused call counts as a rejection.
            annotation: Optional text appended as a user message before the
                model is called again
        """
        history = await self.store.get_history_ref(conversation_id)
        if not history:
            yield create_error_event(
                conversation_id, ErrorCode.NO_HISTORY, "Conversation has no history"
            )
            return

        located = self._find_pending_calls(history)
        if located is None:
            yield create_error_event(
                conversation_id,
                ErrorCode.INVALID_STATE,
                "The conversation is not waiting for a tool confirmation",
            )
            return

        model_index, model_content, pending = located
        if not pending:
            yield create_error_event(
                conversation_id,
                ErrorCode.NO_FUNCTION_CALLS,
                "No pending function calls to confirm",
            )
            return

        logger.info(
            "resume_after_confirmation",
            conversation_id=conversation_id,
            pending=len(pending),
            accepted=sum(1 for accepted in decisions.values() if accepted),
        )

        drained = _ResumeBatch()
        run: list[FunctionCall] = []
        paused_call: FunctionCall | None = None

        for position, call in enumerate(pending):
            if abort_signal is not None and abort_signal.is_aborted():
                break

            accepted = True
            if self.executor.needs_confirmation(call.name):
                if call.id in decisions:
                    accepted = bool(decisions[call.id])
                elif position == 0:
                    accepted = False
                else:
                    paused_call = call
                    break

            if accepted:
                run.append(call)
                continue

            if run:
                async for event in self._drain(
                    run, conversation_id, model_index, channel, abort_signal, drained
                ):
                    yield event
                run = []
                if drained.has_cancelled:
                    break

            response = {"success": False, "rejected": True, "error": USER_REJECTED_ERROR}
            drained.results.append(ToolExecutionResult(id=call.id, name=call.name, result=dict(response)))
            drained.response_parts.append(
                ContentPart(
                    function_response=FunctionResponse(id=call.id, name=call.name, response=response)
                )
            )
            yield create_tool_status_event(conversation_id, call, ToolStatus.ERROR, dict(response))

        if run and not drained.has_cancelled and not (
            abort_signal is not None and abort_signal.is_aborted()
        ):
            async for event in self._drain(
                run, conversation_id, model_index, channel, abort_signal, drained
            ):
                yield event

        await self._append_responses(conversation_id, drained.attachments, drained.response_parts)

        aborted = abort_signal is not None and abort_signal.is_aborted()

        if paused_call is not None and not aborted and not drained.has_cancelled:
            yield create_awaiting_confirmation_event(
                conversation_id,
                [paused_call],
                model_content,
                drained.results,
                drained.checkpoints,
            )
            return

        annotation = (annotation or "").strip()
        if annotation and not aborted:
            await self.store.add_content(
                conversation_id,
                Content(role=MessageRole.USER, parts=[ContentPart(text=annotation)]),
            )

        yield create_tool_iteration_event(
            conversation_id, model_content, drained.results, drained.checkpoints
        )

        if aborted:
            yield create_cancelled_event(conversation_id)
            return
        if drained.has_halting:
            logger.info("turn_halted_after_tools", conversation_id=conversation_id)
            return

        async for event in self.run_turn(
            conversation_id,
            channel,
            abort_signal,
            new_turn=False,
            create_before_model_checkpoint=False,
            model_override=model_override,
        ):
            yield event

    async def execute_orphaned_calls(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None = None,
    ) -> AsyncIterator[LoopEvent]:
        """
        Answer function calls left dangling by an interrupted turn.

        Applies when the last message is a model message carrying function
        calls and no visible text. Yields nothing otherwise.
        """
        history = await self.store.get_history_ref(conversation_id)
        if not history:
            return
        last = history[-1]
        if last.role != MessageRole.MODEL or last.has_text():
            return
        calls = self.parser.extract(last)
        if not calls:
            return

        logger.info(
            "executing_orphaned_calls", conversation_id=conversation_id, calls=len(calls)
        )
        batch = BatchResult()
        async for item in self._execute(
            calls, conversation_id, len(history) - 1, channel, abort_signal
        ):
            if isinstance(item, BatchResult):
                batch = item
            else:
                yield item
        await self._append_responses(
            conversation_id, batch.multimodal_attachments, batch.response_parts
        )
        yield create_tool_iteration_event(
            conversation_id, last, batch.results, batch.checkpoints
        )

    async def run_to_completion(
        self,
        conversation_id: str,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None = None,
        *,
        new_turn: bool = True,
        model_override: str | None = None,
    ) -> LoopOutcome:
        """Drive ``run_turn`` to its end and report the terminal state."""
        outcome = LoopOutcome(state=LoopState.ITERATING)
        async for event in self.run_turn(
            conversation_id, channel, abort_signal, new_turn=new_turn, model_override=model_override
        ):
            outcome = self._apply_event(outcome, event)
        return outcome

    # --- Internals ---

    @staticmethod
    def _apply_event(outcome: LoopOutcome, event: LoopEvent) -> LoopOutcome:
        if event.type == LoopEventType.COMPLETE:
            return LoopOutcome(state=LoopState.COMPLETED, content=event.content)
        if event.type == LoopEventType.AWAITING_CONFIRMATION:
            return LoopOutcome(
                state=LoopState.AWAITING_CONFIRMATION,
                content=event.content,
                pending_calls=event.pending_calls or [],
            )
        if event.type == LoopEventType.CANCELLED:
            return LoopOutcome(state=LoopState.CANCELLED, content=event.content or outcome.content)
        if event.type == LoopEventType.ERROR:
            return LoopOutcome(
                state=LoopState.FAILED,
                content=outcome.content,
                error_code=event.code,
                error_message=event.message,
            )
        if event.type == LoopEventType.TOOL_ITERATION:
            # A halted batch ends the turn on this event
            results = event.results or []
            state = LoopState.ITERATING
            if any(r.cancelled for r in results):
                state = LoopState.CANCELLED
            elif any(r.requires_confirmation for r in results):
                state = LoopState.AWAITING_CONFIRMATION
            return LoopOutcome(state=state, content=event.content)
        return outcome

    def _partition(
        self, calls: list[FunctionCall]
    ) -> tuple[list[FunctionCall], FunctionCall | None]:
        """Leading auto-executable calls, and the first call needing confirmation."""
        for index, call in enumerate(calls):
            if self.executor.needs_confirmation(call.name):
                return calls[:index], call
        return list(calls), None

    def _find_pending_calls(
        self, history: list[Content]
    ) -> tuple[int, Content, list[FunctionCall]] | None:
        """
        Locate the model message a paused turn is waiting on.

        Only function-response messages may follow it.
        """
        answered: set[str] = set()
        for index in range(len(history) - 1, -1, -1):
            message = history[index]
            if message.role == MessageRole.USER and message.is_function_response:
                answered.update(message.function_response_ids())
                continue
            if message.role != MessageRole.MODEL or not message.has_function_calls():
                return None
            calls = self.parser.extract(message)
            return index, message, [c for c in calls if c.id not in answered]
        return None

    async def _call_model(
        self,
        request: GenerateRequest,
        abort_signal: AbortSignal | None,
        call: _ModelCall,
    ) -> AsyncIterator[LoopEvent]:
        """Run one provider call, streaming chunk events; the outcome lands in ``call``."""
        conversation_id = request.conversation_id
        accumulator: StreamAccumulator | None = None
        try:
            response: Any = await self.provider.generate(request, abort_signal)
            if isinstance(response, Content):
                call.content = response
            elif hasattr(response, "__aiter__"):
                accumulator = StreamAccumulator()
                async for chunk in response:
                    accumulator.add(chunk)
                    yield create_chunk_event(conversation_id, chunk)
                    if abort_signal is not None and abort_signal.is_aborted():
                        call.cancelled = True
                        if hasattr(response, "aclose"):
                            await response.aclose()
                        break
                call.content = accumulator.get_content()
            else:
                raise MalformedResponseError(
                    f"Provider returned {type(response).__name__}, expected Content or stream"
                )
        except ProviderError as e:
            if e.cancelled or (abort_signal is not None and abort_signal.is_aborted()):
                call.cancelled = True
                if accumulator is not None and not accumulator.is_empty:
                    call.content = accumulator.get_content()
                return
            logger.error(
                "provider_error",
                conversation_id=conversation_id,
                code=e.code,
                error=e.message or str(e),
            )
            call.error = e.message or str(e) or "Provider request failed"
            return

        if abort_signal is not None and abort_signal.is_aborted():
            call.cancelled = True

    async def _execute(
        self,
        calls: list[FunctionCall],
        conversation_id: str,
        message_index: int,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None,
    ) -> AsyncIterator[LoopEvent | BatchResult]:
        """Execute a batch, yielding live status events and finally the BatchResult."""
        yield create_tools_executing_event(conversation_id, calls)
        async for progress in self.executor.execute_batch_with_progress(
            calls, conversation_id, message_index, channel, abort_signal
        ):
            if progress.kind == "end":
                yield create_tool_status_event(
                    conversation_id, progress.call, progress.status, progress.result
                )
            elif progress.kind == "complete":
                yield progress.batch

    async def _drain(
        self,
        calls: list[FunctionCall],
        conversation_id: str,
        message_index: int,
        channel: ChannelConfig,
        abort_signal: AbortSignal | None,
        drained: _ResumeBatch,
    ) -> AsyncIterator[LoopEvent]:
        async for item in self._execute(
            calls, conversation_id, message_index, channel, abort_signal
        ):
            if isinstance(item, BatchResult):
                drained.merge(item)
            else:
                yield item

    async def _append_responses(
        self,
        conversation_id: str,
        attachments: list[ContentPart],
        response_parts: list[ContentPart],
    ) -> None:
        """Persist one function-response message; attachments go first."""
        if not response_parts:
            return
        await self.store.add_content(
            conversation_id,
            Content(
                role=MessageRole.USER,
                parts=[*attachments, *response_parts],
                is_function_response=True,
            ),
        )

    async def _resolve_dynamic_context(self, conversation_id: str, new_turn: bool) -> str:
        """
        Dynamic context for this turn.

        New turns generate it once and cache it on the turn's first user
        message; resumed turns reuse the cached text verbatim.
        """
        history = await self.store.get_history_ref(conversation_id)
        start = find_turn_start_index(history)
        if not new_turn and start >= 0:
            cached = history[start].turn_dynamic_context
            if cached is not None:
                return cached

        dynamic_context = await self.prompts.get_dynamic_context(conversation_id)
        if start >= 0:
            await self.store.update_message(
                conversation_id, start, {"turn_dynamic_context": dynamic_context}
            )
        return dynamic_context

    async def _store_dynamic_context(self, conversation_id: str, dynamic_context: str) -> None:
        """Re-attach the cached context after summarization shifted message indices."""
        history = await self.store.get_history_ref(conversation_id)
        start = find_turn_start_index(history)
        if start >= 0 and history[start].turn_dynamic_context != dynamic_context:
            await self.store.update_message(
                conversation_id, start, {"turn_dynamic_context": dynamic_context}
            )


__all__ = ["AgentLoop", "LoopOutcome", "find_turn_start_index", "USER_REJECTED_ERROR"]
