"""
LLM providers module.

This module contains the provider interface:
- Provider: Abstract base class
- GenerateRequest: Request passed to ``Provider.generate``
- StreamAccumulator: Folds streamed chunks into one message
"""

from .base import GenerateRequest, Provider, StreamChunk
from .stream import StreamAccumulator

__all__ = [
    "GenerateRequest",
    "Provider",
    "StreamChunk",
    "StreamAccumulator",
]
