"""
Test doubles shared across the suite.
"""

from typing import Any, AsyncIterator, Callable

from chatflow.config.schema import ChannelConfig, ChannelType
from chatflow.domain import (
    Content,
    ContentPart,
    FunctionCall,
    FunctionResponse,
    MessageRole,
    StreamChunk,
    UsageMetadata,
)
from chatflow.providers.llm import GenerateRequest, Provider
from chatflow.providers.tools import BaseTool, McpCallResult, McpContentItem, ToolContext


def make_channel(**overrides: Any) -> ChannelConfig:
    values: dict[str, Any] = {"id": "test", "type": ChannelType.GEMINI, "model": "test-model"}
    values.update(overrides)
    return ChannelConfig(**values)


def user_text(text: str, **fields: Any) -> Content:
    return Content(role=MessageRole.USER, parts=[ContentPart(text=text)], **fields)


def model_text(text: str, **fields: Any) -> Content:
    return Content(role=MessageRole.MODEL, parts=[ContentPart(text=text)], **fields)


def call(name: str, call_id: str | None = None, **args: Any) -> FunctionCall:
    return FunctionCall(id=call_id, name=name, args=args)


def model_calls(*calls: FunctionCall, text: str | None = None) -> Content:
    parts = [ContentPart(text=text)] if text else []
    parts.extend(ContentPart(function_call=c) for c in calls)
    return Content(role=MessageRole.MODEL, parts=parts)


def function_responses(*pairs: tuple[str, str], result: dict | None = None) -> Content:
    return Content(
        role=MessageRole.USER,
        is_function_response=True,
        parts=[
            ContentPart(
                function_response=FunctionResponse(
                    id=call_id, name=name, response=result or {"success": True}
                )
            )
            for call_id, name in pairs
        ],
    )


def build_rounds(count: int, tokens_per_message: int = 100) -> list[Content]:
    """``count`` plain question/answer rounds with cached token counts."""
    history: list[Content] = []
    for i in range(count):
        history.append(
            user_text(
                f"question {i}",
                is_user_input=True,
                token_count_by_channel={"gemini": tokens_per_message},
            )
        )
        history.append(
            model_text(
                f"answer {i}",
                usage_metadata=UsageMetadata(candidates_token_count=tokens_per_message),
            )
        )
    return history


def function_response_ids(history: list[Content]) -> list[str]:
    return [i for message in history for i in message.function_response_ids()]


def function_call_ids(history: list[Content]) -> list[str]:
    return [
        p.function_call.id
        for message in history
        for p in message.parts
        if p.function_call is not None
    ]


async def _stream(chunks: list[StreamChunk]) -> AsyncIterator[StreamChunk]:
    for chunk in chunks:
        yield chunk


class ScriptedProvider(Provider):
    """
    Replays scripted responses in order.

    Each item is a Content (non-streaming), a list of StreamChunk
    (streaming), an exception to raise, or a callable
    ``(request, abort_signal) -> response``.
    """

    def __init__(self, responses: list[Any] | None = None):
        self.responses = list(responses or [])
        self.requests: list[GenerateRequest] = []

    def add(self, *responses: Any) -> None:
        self.responses.extend(responses)

    @property
    def tool_requests(self) -> list[GenerateRequest]:
        return [r for r in self.requests if not r.skip_tools]

    @property
    def summary_requests(self) -> list[GenerateRequest]:
        return [r for r in self.requests if r.skip_tools]

    async def generate(self, request, abort_signal=None):
        self.requests.append(request.model_copy(deep=True))
        if not self.responses:
            raise AssertionError("ScriptedProvider ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, list):
            return _stream(item)
        if callable(item):
            return item(request, abort_signal)
        return item.model_copy(deep=True)


class RecordingTool(BaseTool):
    """Tool returning a fixed result and recording every invocation."""

    def __init__(
        self,
        name: str,
        result: dict[str, Any] | None = None,
        error: Exception | None = None,
        log: list[str] | None = None,
        on_execute: Callable[[dict[str, Any], ToolContext], Any] | None = None,
    ):
        self._name = name
        self.result = result if result is not None else {"success": True, "data": name}
        self.error = error
        self.log = log if log is not None else []
        self.on_execute = on_execute
        self.calls: list[dict[str, Any]] = []
        self.contexts: list[ToolContext] = []
        super().__init__()

    def get_name(self) -> str:
        return self._name

    def get_description(self) -> str:
        return f"{self._name} test tool"

    def get_parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        self.calls.append(args)
        self.contexts.append(context)
        self.log.append(self._name)
        if self.on_execute is not None:
            self.on_execute(args, context)
        if self.error is not None:
            raise self.error
        return dict(self.result)


class FakeMcpClient:
    def __init__(self, result: McpCallResult | None = None):
        self.result = result or McpCallResult(
            success=True, content=[McpContentItem(type="text", text="mcp ok")]
        )
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def call_tool(self, server_id: str, tool_name: str, arguments: dict[str, Any]):
        self.calls.append((server_id, tool_name, arguments))
        return self.result


class FakeTokenCounter:
    """One token per character; messages never count below 1."""

    def __init__(self):
        self.batches: list[list[str]] = []

    async def count_text_tokens_batch(self, texts: list[str], channel_type: str) -> list[int]:
        self.batches.append(list(texts))
        return [len(text) for text in texts]

    def estimate_message_tokens(self, content: Content) -> int:
        return max(1, sum(len(p.text or "") for p in content.parts))


async def collect(stream) -> list:
    return [event async for event in stream]


def event_types(events) -> list[str]:
    return [event.type.value for event in events]
