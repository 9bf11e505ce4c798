"""
Checkpoint backend interface and in-memory implementation.

A backend snapshots whatever state the host wants to roll back (workspace
files, editor state) and records a ``Checkpoint`` marker for it.
"""

from abc import ABC, abstractmethod
from typing import List

from chatflow.domain import Checkpoint, CheckpointPhase


class CheckpointBackend(ABC):
    """Checkpoint backend interface."""

    @abstractmethod
    async def create_checkpoint(
        self,
        conversation_id: str,
        message_index: int,
        label: str,
        phase: CheckpointPhase,
    ) -> Checkpoint | None:
        """Create a checkpoint; None if the backend declined to snapshot"""
        pass

    @abstractmethod
    async def delete_checkpoints_from_index(
        self, conversation_id: str, start_index: int
    ) -> int:
        """
        Delete checkpoints with message_index >= start_index.

        Returns:
            Number of deleted checkpoints
        """
        pass

    @abstractmethod
    async def list_checkpoints(self, conversation_id: str) -> List[Checkpoint]:
        pass


class InMemoryCheckpointBackend(CheckpointBackend):
    """
    In-memory implementation (for testing and development)
    """

    def __init__(self):
        self.checkpoints: dict[str, List[Checkpoint]] = {}

    async def create_checkpoint(
        self,
        conversation_id: str,
        message_index: int,
        label: str,
        phase: CheckpointPhase,
    ) -> Checkpoint | None:
        checkpoint = Checkpoint(
            conversation_id=conversation_id,
            message_index=message_index,
            label=label,
            phase=phase,
        )
        self.checkpoints.setdefault(conversation_id, []).append(checkpoint)
        return checkpoint

    async def delete_checkpoints_from_index(
        self, conversation_id: str, start_index: int
    ) -> int:
        existing = self.checkpoints.get(conversation_id, [])
        kept = [c for c in existing if c.message_index < start_index]
        self.checkpoints[conversation_id] = kept
        return len(existing) - len(kept)

    async def list_checkpoints(self, conversation_id: str) -> List[Checkpoint]:
        return sorted(
            self.checkpoints.get(conversation_id, []),
            key=lambda c: (c.message_index, c.created_at),
        )
