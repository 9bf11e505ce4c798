"""
Checkpoint providers module.

- CheckpointBackend: Abstract checkpoint backend interface
- InMemoryCheckpointBackend: In-memory implementation (for testing)
"""

from .base import CheckpointBackend, InMemoryCheckpointBackend

__all__ = [
    "CheckpointBackend",
    "InMemoryCheckpointBackend",
]
