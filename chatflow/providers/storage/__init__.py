"""
Storage providers module.

This module contains conversation store implementations:
- ConversationStore: Abstract conversation store interface
- InMemoryConversationStore: In-memory implementation (for testing)
"""

from .base import ConversationStore, InMemoryConversationStore

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
]
