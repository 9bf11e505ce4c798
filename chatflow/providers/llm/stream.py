"""
Streaming accumulation.

Folds provider ``StreamChunk``s into a single model ``Content``.
"""

import time

from chatflow.domain import Content, ContentPart, MessageRole, StreamChunk, UsageMetadata


class StreamAccumulator:
    """
    Accumulates stream chunks into one message.

    Consecutive text deltas of the same kind (thought vs. visible text) are
    merged into one part; every other part is appended as-is.

    Examples:
        >>> acc = StreamAccumulator()
        >>> acc.add(StreamChunk(delta=[ContentPart(text="Hel")]))
        >>> acc.add(StreamChunk(delta=[ContentPart(text="lo")]))
        >>> acc.get_content().text
        'Hello'
    """

    def __init__(self):
        self._parts: list[ContentPart] = []
        self._usage: UsageMetadata | None = None
        self._finish_reason: str | None = None
        self._start_time = time.monotonic()
        self._chunk_count = 0

    def add(self, chunk: StreamChunk) -> None:
        self._chunk_count += 1
        for part in chunk.delta:
            self._add_part(part)
        if chunk.usage_metadata is not None:
            self._usage = chunk.usage_metadata
        if chunk.finish_reason:
            self._finish_reason = chunk.finish_reason

    def _add_part(self, part: ContentPart) -> None:
        if part.text is not None and self._parts:
            last = self._parts[-1]
            if last.text is not None and last.thought == part.thought:
                last.text += part.text
                return
        self._parts.append(part.model_copy(deep=True))

    @property
    def is_empty(self) -> bool:
        return not any(
            p.text or p.function_call or p.inline_data for p in self._parts
        )

    @property
    def finish_reason(self) -> str | None:
        return self._finish_reason

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    def get_content(self) -> Content:
        """Build the finalized model message from everything received so far."""
        parts = [p.model_copy(deep=True) for p in self._parts if p.text != ""]
        return Content(
            role=MessageRole.MODEL,
            parts=parts,
            usage_metadata=self._usage,
            response_duration_ms=(time.monotonic() - self._start_time) * 1000,
        )


__all__ = ["StreamAccumulator"]
