"""
Unified tool executor.

Runs the tool calls of one batch sequentially (later calls may depend on
side effects of earlier ones), bracketed by a before/after checkpoint pair.
Failures never raise past the batch: every outcome is a result dict.
"""

import asyncio
import copy
from typing import Any, AsyncIterator, Literal

from pydantic import BaseModel, Field

from chatflow.config.schema import ChannelConfig, ToolMode
from chatflow.config.settings import SettingsProvider
from chatflow.domain import (
    Checkpoint,
    CheckpointPhase,
    ContentPart,
    FunctionCall,
    FunctionResponse,
    InlineData,
    ToolExecutionResult,
    ToolStatus,
)
from chatflow.providers.tools import (
    McpClient,
    MultimodalCapability,
    ToolContext,
    ToolRegistry,
    is_mcp_tool,
    split_mcp_tool_name,
)
from chatflow.runtime.checkpoint import TOOL_BATCH_LABEL, CheckpointCoordinator
from chatflow.runtime.control import AbortSignal
from chatflow.runtime.tool_policy import ToolPolicy
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)


class BatchResult(BaseModel):
    """Aggregate outcome of one batch."""

    response_parts: list[ContentPart] = Field(default_factory=list)
    results: list[ToolExecutionResult] = Field(default_factory=list)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    # Prompt-mode multimodal payloads, placed before the responses
    multimodal_attachments: list[ContentPart] = Field(default_factory=list)

    @property
    def has_cancelled(self) -> bool:
        return any(r.cancelled for r in self.results)

    @property
    def has_halting(self) -> bool:
        """A cancelled or review-flagged result ends the turn after this batch."""
        return any(r.cancelled or r.requires_confirmation for r in self.results)


class ToolProgress(BaseModel):
    """
    Incremental batch progress.

    ``start`` / ``end`` events bracket each call; the final ``complete``
    event carries the aggregate ``batch``.
    """

    kind: Literal["start", "end", "complete"]
    call: FunctionCall | None = None
    result: dict[str, Any] | None = None
    status: ToolStatus | None = None
    batch: BatchResult | None = None


def derive_tool_status(result: dict[str, Any]) -> ToolStatus:
    """
    ``error`` for failed, cancelled or rejected results; ``warning`` when a
    batch-style result reports both applied and failed items.
    """
    if (
        result.get("success") is False
        or result.get("error")
        or result.get("cancelled")
        or result.get("rejected")
    ):
        return ToolStatus.ERROR

    data = result.get("data")
    if isinstance(data, dict):
        applied = data.get("appliedCount", data.get("applied_count", 0)) or 0
        failed = data.get("failedCount", data.get("failed_count", 0)) or 0
        if applied > 0 and failed > 0:
            return ToolStatus.WARNING

    return ToolStatus.SUCCESS


class ToolExecutor:
    """Executes tool call batches against the registry and MCP servers."""

    def __init__(
        self,
        registry: ToolRegistry,
        settings: SettingsProvider,
        checkpoints: CheckpointCoordinator | None = None,
        mcp_client: McpClient | None = None,
    ):
        self.registry = registry
        self.settings = settings
        self.checkpoints = checkpoints
        self.mcp_client = mcp_client
        self.policy = ToolPolicy(settings)

    # --- Confirmation ---

    def needs_confirmation(self, tool_name: str) -> bool:
        """Policy-rejected tools never ask; others follow the auto-exec allowlist."""
        if self.policy.is_rejected_by_name(tool_name):
            return False
        return not self.settings.is_tool_auto_exec(tool_name)

    # --- Batch execution ---

    async def execute_batch(
        self,
        calls: list[FunctionCall],
        conversation_id: str,
        message_index: int,
        channel: ChannelConfig | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> BatchResult:
        batch = BatchResult()
        async for progress in self.execute_batch_with_progress(
            calls, conversation_id, message_index, channel, abort_signal
        ):
            if progress.kind == "complete" and progress.batch is not None:
                batch = progress.batch
        return batch

    async def execute_batch_with_progress(
        self,
        calls: list[FunctionCall],
        conversation_id: str,
        message_index: int,
        channel: ChannelConfig | None = None,
        abort_signal: AbortSignal | None = None,
    ) -> AsyncIterator[ToolProgress]:
        batch = BatchResult()
        over_limit = self._calls_over_agent_limit(calls)
        label = calls[0].name if len(calls) == 1 else TOOL_BATCH_LABEL

        logger.info(
            "tool_batch_started",
            conversation_id=conversation_id,
            calls=len(calls),
            over_limit=len(over_limit),
        )

        await self._checkpoint(batch, conversation_id, message_index, label, CheckpointPhase.BEFORE)

        for call in calls:
            if abort_signal is not None and abort_signal.is_aborted():
                logger.info(
                    "tool_batch_aborted",
                    conversation_id=conversation_id,
                    completed=len(batch.results),
                    remaining=len(calls) - len(batch.results),
                )
                break

            yield ToolProgress(kind="start", call=call)

            if call.id in over_limit:
                response = {
                    "success": False,
                    "rejected": True,
                    "error": (
                        f"Sub-agent limit exceeded: at most "
                        f"{self.settings.get_max_concurrent_agents()} "
                        f"'{call.name}' call(s) per response"
                    ),
                }
            else:
                response = await self._execute_call(call, conversation_id, channel, abort_signal)

            batch.results.append(
                ToolExecutionResult(id=call.id, name=call.name, result=copy.deepcopy(response))
            )
            self._append_response(batch, call, response, channel)

            yield ToolProgress(
                kind="end",
                call=call,
                result=batch.results[-1].result,
                status=derive_tool_status(response),
            )

        await self._checkpoint(batch, conversation_id, message_index, label, CheckpointPhase.AFTER)

        logger.info(
            "tool_batch_completed",
            conversation_id=conversation_id,
            executed=len(batch.results),
            failed=sum(1 for r in batch.results if r.failed),
        )
        yield ToolProgress(kind="complete", batch=batch)

    # --- Internals ---

    def _calls_over_agent_limit(self, calls: list[FunctionCall]) -> set[str]:
        limit = self.settings.get_max_concurrent_agents()
        if limit < 0:
            return set()
        subagent_tool = self.settings.get_subagent_tool_name()
        agent_calls = [c for c in calls if c.name == subagent_tool]
        return {c.id for c in agent_calls[limit:]}

    async def _checkpoint(
        self,
        batch: BatchResult,
        conversation_id: str,
        message_index: int,
        label: str,
        phase: CheckpointPhase,
    ) -> None:
        if self.checkpoints is None:
            return
        checkpoint = await self.checkpoints.create_for_tool_batch(
            conversation_id, message_index, label, phase
        )
        if checkpoint is not None:
            batch.checkpoints.append(checkpoint)

    async def _execute_call(
        self,
        call: FunctionCall,
        conversation_id: str,
        channel: ChannelConfig | None,
        abort_signal: AbortSignal | None,
    ) -> dict[str, Any]:
        reason = self.policy.rejection_reason(call.name, call.args)
        if reason is not None:
            logger.info("tool_call_rejected_by_policy", tool_name=call.name, reason=reason)
            return {"success": False, "rejected": True, "error": reason}

        try:
            logger.debug("executing_tool", tool_name=call.name, tool_call_id=call.id)
            if is_mcp_tool(call.name) and self.mcp_client is not None:
                return await self._execute_mcp(call)
            return await self._execute_builtin(call, conversation_id, channel, abort_signal)

        except asyncio.CancelledError:
            logger.info("tool_execution_cancelled", tool_name=call.name)
            return {
                "success": False,
                "cancelled": True,
                "error": "Tool execution was cancelled",
            }

        except Exception as e:
            logger.error(
                "tool_execution_exception",
                tool_name=call.name,
                error=str(e),
                exc_info=True,
            )
            return {"success": False, "error": str(e) or "Tool execution failed"}

    async def _execute_mcp(self, call: FunctionCall) -> dict[str, Any]:
        split = split_mcp_tool_name(call.name)
        if split is None:
            return {"success": False, "error": f"Invalid MCP tool name: {call.name}"}

        server_id, tool_name = split
        result = await self.mcp_client.call_tool(server_id, tool_name, call.args)
        if not result.success:
            return {"success": False, "error": result.error or "MCP tool call failed"}

        text = "\n".join(
            item.text for item in result.content if item.type == "text" and item.text
        )
        return {"success": True, "content": text or "Tool executed successfully"}

    async def _execute_builtin(
        self,
        call: FunctionCall,
        conversation_id: str,
        channel: ChannelConfig | None,
        abort_signal: AbortSignal | None,
    ) -> dict[str, Any]:
        tool = self.registry.get_tool(call.name)
        if tool is None:
            return {"success": False, "error": f"Tool not found: {call.name}"}

        context = ToolContext(
            call_id=call.id,
            conversation_id=conversation_id,
            abort_signal=abort_signal,
            multimodal_enabled=bool(channel and channel.multimodal_tools_enabled),
            capability=MultimodalCapability.for_channel(channel),
        )
        result = await tool.execute(dict(call.args), context)
        if not isinstance(result, dict):
            return {"success": True, "content": result}
        return result

    def _append_response(
        self,
        batch: BatchResult,
        call: FunctionCall,
        response: dict[str, Any],
        channel: ChannelConfig | None,
    ) -> None:
        """Build the function response part, routing any multimodal payload."""
        multimodal = response.pop("multimodal", None)
        side_parts: list[ContentPart] | None = None

        if multimodal:
            inline_parts = [
                ContentPart(
                    inline_data=InlineData(
                        mime_type=item.get("mime_type") or item.get("mimeType", ""),
                        data=item.get("data", ""),
                        display_name=item.get("name"),
                    )
                )
                for item in multimodal
                if isinstance(item, dict)
            ]
            capability = MultimodalCapability.for_channel(channel)
            prompt_mode = channel is not None and channel.tool_mode in (ToolMode.XML, ToolMode.JSON)

            if not (capability.supports_images or capability.supports_documents):
                logger.info(
                    "multimodal_payload_discarded",
                    tool_name=call.name,
                    channel_type=channel.type.value if channel else None,
                    items=len(inline_parts),
                )
            elif prompt_mode:
                batch.multimodal_attachments.extend(inline_parts)
            else:
                side_parts = inline_parts

        batch.response_parts.append(
            ContentPart(
                function_response=FunctionResponse(
                    id=call.id, name=call.name, response=response, parts=side_parts
                )
            )
        )


__all__ = ["ToolExecutor", "BatchResult", "ToolProgress", "derive_tool_status"]
