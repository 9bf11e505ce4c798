"""
Token counting.

``TokenCounter`` is the contract used by context budgeting. The default
implementation counts with tiktoken's ``cl100k_base`` encoding and falls
back to four characters per token when the encoding cannot be loaded.
"""

import json
import math
from typing import Any, Protocol, runtime_checkable

from chatflow.domain import Content, InlineData
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENCODING = "cl100k_base"
CHARS_PER_TOKEN = 4
IMAGE_TOKENS = 500
DOCUMENT_TOKENS_PER_PAGE = 500
# Rough size of one PDF page once base64-encoded
DOCUMENT_BASE64_BYTES_PER_PAGE = 100_000
OTHER_MEDIA_TOKENS = 1000


@runtime_checkable
class TokenCounter(Protocol):
    async def count_text_tokens_batch(
        self, texts: list[str], channel_type: str
    ) -> list[int]: ...

    def estimate_message_tokens(self, content: Content) -> int: ...


def estimate_inline_data_tokens(data: InlineData) -> int:
    mime = (data.mime_type or "").lower()
    if mime.startswith("image/"):
        return IMAGE_TOKENS
    if mime == "application/pdf":
        pages = max(1, math.ceil(len(data.data) / DOCUMENT_BASE64_BYTES_PER_PAGE))
        return pages * DOCUMENT_TOKENS_PER_PAGE
    return OTHER_MEDIA_TOKENS


class TiktokenCounter:
    """tiktoken-backed counter; channel type does not change the encoding."""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        self.encoding_name = encoding_name
        self._encoding: Any = None
        self._encoding_failed = False

    def _get_encoding(self) -> Any:
        if self._encoding is None and not self._encoding_failed:
            try:
                import tiktoken

                self._encoding = tiktoken.get_encoding(self.encoding_name)
            except Exception as e:
                self._encoding_failed = True
                logger.warning(
                    "tiktoken_unavailable",
                    encoding=self.encoding_name,
                    error=str(e),
                )
        return self._encoding

    def count_text(self, text: str) -> int:
        if not text:
            return 0
        encoding = self._get_encoding()
        if encoding is None:
            return math.ceil(len(text) / CHARS_PER_TOKEN)
        return len(encoding.encode(text, disallowed_special=()))

    async def count_text_tokens_batch(
        self, texts: list[str], channel_type: str
    ) -> list[int]:
        return [self.count_text(text) for text in texts]

    def estimate_message_tokens(self, content: Content) -> int:
        """Estimate one message; never less than 1."""
        tokens = 0
        for part in content.parts:
            if part.text:
                tokens += self.count_text(part.text)
            if part.inline_data is not None:
                tokens += estimate_inline_data_tokens(part.inline_data)
            if part.function_call is not None:
                tokens += self.count_text(
                    part.function_call.name + json.dumps(part.function_call.args, ensure_ascii=False)
                )
            if part.function_response is not None:
                response = part.function_response
                tokens += self.count_text(
                    response.name + json.dumps(response.response, ensure_ascii=False, default=str)
                )
                for sub in response.parts or []:
                    if sub.inline_data is not None:
                        tokens += estimate_inline_data_tokens(sub.inline_data)
        return max(1, tokens)


__all__ = ["TokenCounter", "TiktokenCounter", "estimate_inline_data_tokens"]
