"""Exception hierarchy for chatflow."""


class ChatflowError(Exception):
    """Base exception for chatflow errors."""

    code: str = "UNKNOWN_ERROR"

    def __init__(self, message: str = "", code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ProviderError(ChatflowError):
    """Provider call failed (network, auth, rate limit, ...)."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str = "", code: str | None = None, cancelled: bool = False):
        super().__init__(message, code)
        self.cancelled = cancelled


class MalformedResponseError(ChatflowError):
    """Provider returned something that violates its contract."""

    code = "MALFORMED_RESPONSE"


class ConversationNotFoundError(ChatflowError):
    """Conversation id is unknown to the store."""

    code = "CONVERSATION_NOT_FOUND"


class SummarizeError(ChatflowError):
    """Summarization could not produce a summary."""

    code = "SUMMARIZE_FAILED"


__all__ = [
    "ChatflowError",
    "ProviderError",
    "MalformedResponseError",
    "ConversationNotFoundError",
    "SummarizeError",
]
