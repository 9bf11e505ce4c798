"""
Checkpoint coordination around user messages, model messages and tool
batches. Every creation is gated by its own setting and is a no-op when no
backend is configured.
"""

from chatflow.config.settings import SettingsProvider
from chatflow.domain import Checkpoint, CheckpointPhase
from chatflow.providers.checkpoint import CheckpointBackend
from chatflow.providers.storage import ConversationStore
from chatflow.utils.logging import get_logger

logger = get_logger(__name__)

USER_MESSAGE_LABEL = "user_message"
MODEL_MESSAGE_LABEL = "model_message"
TOOL_BATCH_LABEL = "tool_batch"


class CheckpointCoordinator:
    """Creates and deletes checkpoints on behalf of the agent loop."""

    def __init__(
        self,
        store: ConversationStore,
        settings: SettingsProvider,
        backend: CheckpointBackend | None = None,
    ):
        self.store = store
        self.settings = settings
        self.backend = backend

    async def _create(
        self, conversation_id: str, index: int, label: str, phase: CheckpointPhase
    ) -> Checkpoint | None:
        checkpoint = await self.backend.create_checkpoint(
            conversation_id, index, label, phase
        )
        if checkpoint is not None:
            logger.debug(
                "checkpoint_created",
                conversation_id=conversation_id,
                message_index=index,
                label=label,
                phase=phase.value,
            )
        return checkpoint

    async def create_for_user_message(
        self,
        conversation_id: str,
        phase: CheckpointPhase,
        index: int | None = None,
    ) -> Checkpoint | None:
        """
        Checkpoint around a user message.

        Without ``index``: "before" uses the position the message will take,
        "after" uses the last message (None for an empty history).
        """
        if self.backend is None:
            return None
        if not self.settings.is_checkpoint_enabled(USER_MESSAGE_LABEL, phase.value):
            return None

        if index is None:
            history = await self.store.get_history_ref(conversation_id)
            if phase == CheckpointPhase.BEFORE:
                index = len(history)
            else:
                if not history:
                    return None
                index = len(history) - 1

        return await self._create(conversation_id, index, USER_MESSAGE_LABEL, phase)

    async def create_for_model_message(
        self,
        conversation_id: str,
        phase: CheckpointPhase,
        iteration: int | None = None,
    ) -> Checkpoint | None:
        """
        Checkpoint around a model message.

        In outer-layer-only mode, "before" checkpoints are created on the
        first iteration only.
        """
        if self.backend is None:
            return None
        if not self.settings.is_checkpoint_enabled(MODEL_MESSAGE_LABEL, phase.value):
            return None

        history = await self.store.get_history_ref(conversation_id)
        if phase == CheckpointPhase.BEFORE:
            if self.settings.is_model_checkpoint_outer_layer_only() and iteration != 1:
                return None
            index = len(history)
        else:
            if not history:
                return None
            index = len(history) - 1

        return await self._create(conversation_id, index, MODEL_MESSAGE_LABEL, phase)

    async def create_for_tool_batch(
        self,
        conversation_id: str,
        index: int,
        label: str,
        phase: CheckpointPhase,
    ) -> Checkpoint | None:
        if self.backend is None:
            return None
        if not self.settings.is_checkpoint_enabled(TOOL_BATCH_LABEL, phase.value):
            return None
        return await self._create(conversation_id, index, label, phase)

    async def delete_from_index(self, conversation_id: str, index: int) -> None:
        """Remove all checkpoints at or after ``index``."""
        if self.backend is None:
            return
        deleted = await self.backend.delete_checkpoints_from_index(conversation_id, index)
        logger.debug(
            "checkpoints_deleted",
            conversation_id=conversation_id,
            start_index=index,
            deleted=deleted,
        )


__all__ = ["CheckpointCoordinator", "TOOL_BATCH_LABEL"]
