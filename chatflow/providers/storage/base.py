"""
Conversation store interface and in-memory implementation.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from chatflow.config.schema import HistoryOptions
from chatflow.domain import Content
from chatflow.exceptions import ConversationNotFoundError


class ConversationStore(ABC):
    """
    Conversation store interface.

    An append-only log of ``Content`` per conversation, addressed by
    integer message index, plus a small per-conversation metadata map.
    """

    # --- Conversation Operations ---

    @abstractmethod
    async def create_conversation(self, conversation_id: str) -> None:
        """Create an empty conversation (no-op if it exists)"""
        pass

    @abstractmethod
    async def conversation_exists(self, conversation_id: str) -> bool:
        pass

    # --- History Operations ---

    @abstractmethod
    async def get_history(self, conversation_id: str) -> List[Content]:
        """Get a deep copy of the full history"""
        pass

    @abstractmethod
    async def get_history_ref(self, conversation_id: str) -> List[Content]:
        """
        Get the live history list.

        Callers must treat it as read-only; mutations go through the
        store methods.
        """
        pass

    @abstractmethod
    async def get_message(self, conversation_id: str, index: int) -> Optional[Content]:
        """Get one message, None if the index is out of range"""
        pass

    @abstractmethod
    async def add_content(self, conversation_id: str, content: Content) -> int:
        """
        Append a message.

        Returns:
            Index of the appended message
        """
        pass

    @abstractmethod
    async def insert_content(
        self, conversation_id: str, index: int, content: Content
    ) -> None:
        """Insert a message before ``index``"""
        pass

    @abstractmethod
    async def update_message(
        self, conversation_id: str, index: int, updates: dict[str, Any]
    ) -> None:
        """Update fields of one message in place"""
        pass

    @abstractmethod
    async def delete_message(self, conversation_id: str, index: int) -> None:
        pass

    @abstractmethod
    async def delete_to_message(self, conversation_id: str, target_index: int) -> int:
        """
        Delete messages with index >= target_index.

        Returns:
            Number of deleted messages
        """
        pass

    # --- Metadata ---

    @abstractmethod
    async def get_custom_metadata(self, conversation_id: str, key: str) -> Any:
        pass

    @abstractmethod
    async def set_custom_metadata(self, conversation_id: str, key: str, value: Any) -> None:
        """Set a metadata value; None removes the key"""
        pass

    # --- Derived Queries ---

    async def get_history_for_api(
        self,
        conversation_id: str,
        start_index: int = 0,
        options: HistoryOptions | None = None,
    ) -> List[Content]:
        """
        Get the provider-bound history slice starting at ``start_index``.

        Thought parts are filtered per ``options``: the current round keeps
        them only with ``send_current_thoughts``; older rounds only with
        ``send_history_thoughts`` and within ``history_thinking_rounds``.
        """
        options = options or HistoryOptions()
        history = await self.get_history_ref(conversation_id)

        round_starts = [i for i, m in enumerate(history) if m.is_round_start()]
        current_round_start = round_starts[-1] if round_starts else 0

        thought_min_index = 0
        if options.history_thinking_rounds == 0:
            thought_min_index = len(history)
        elif options.history_thinking_rounds > 0:
            skip = len(round_starts) - 1 - options.history_thinking_rounds
            if 0 < skip < len(round_starts):
                thought_min_index = round_starts[skip]

        result: List[Content] = []
        for index in range(max(0, start_index), len(history)):
            message = history[index].model_copy(deep=True)
            if index >= current_round_start:
                keep_thoughts = options.send_current_thoughts
            else:
                keep_thoughts = options.send_history_thoughts and index >= thought_min_index
            if not keep_thoughts:
                message.parts = [p for p in message.parts if not p.is_thought()]
            result.append(message)
        return result


class InMemoryConversationStore(ConversationStore):
    """
    In-memory implementation (for testing and development)
    """

    def __init__(self):
        self.conversations: dict[str, List[Content]] = {}
        self.metadata: dict[str, dict[str, Any]] = {}

    def _require(self, conversation_id: str) -> List[Content]:
        if conversation_id not in self.conversations:
            raise ConversationNotFoundError(f"Conversation not found: {conversation_id}")
        return self.conversations[conversation_id]

    async def create_conversation(self, conversation_id: str) -> None:
        self.conversations.setdefault(conversation_id, [])
        self.metadata.setdefault(conversation_id, {})

    async def conversation_exists(self, conversation_id: str) -> bool:
        return conversation_id in self.conversations

    async def get_history(self, conversation_id: str) -> List[Content]:
        return [m.model_copy(deep=True) for m in self._require(conversation_id)]

    async def get_history_ref(self, conversation_id: str) -> List[Content]:
        return self._require(conversation_id)

    async def get_message(self, conversation_id: str, index: int) -> Optional[Content]:
        history = self._require(conversation_id)
        if 0 <= index < len(history):
            return history[index]
        return None

    async def add_content(self, conversation_id: str, content: Content) -> int:
        history = self.conversations.setdefault(conversation_id, [])
        self.metadata.setdefault(conversation_id, {})
        history.append(content)
        return len(history) - 1

    async def insert_content(
        self, conversation_id: str, index: int, content: Content
    ) -> None:
        history = self._require(conversation_id)
        history.insert(max(0, min(index, len(history))), content)

    async def update_message(
        self, conversation_id: str, index: int, updates: dict[str, Any]
    ) -> None:
        history = self._require(conversation_id)
        if not 0 <= index < len(history):
            raise IndexError(f"Message index out of range: {index}")
        history[index] = history[index].model_copy(update=updates)

    async def delete_message(self, conversation_id: str, index: int) -> None:
        history = self._require(conversation_id)
        if 0 <= index < len(history):
            del history[index]

    async def delete_to_message(self, conversation_id: str, target_index: int) -> int:
        history = self._require(conversation_id)
        target_index = max(0, target_index)
        deleted = max(0, len(history) - target_index)
        del history[target_index:]
        return deleted

    async def get_custom_metadata(self, conversation_id: str, key: str) -> Any:
        return self.metadata.get(conversation_id, {}).get(key)

    async def set_custom_metadata(self, conversation_id: str, key: str, value: Any) -> None:
        meta = self.metadata.setdefault(conversation_id, {})
        if value is None:
            meta.pop(key, None)
        else:
            meta[key] = value
