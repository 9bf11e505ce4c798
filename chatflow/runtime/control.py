"""
Control flow utilities for agent execution.

- AbortSignal: Graceful cancellation mechanism
"""

import asyncio


class AbortSignal:
    """
    Abort signal for graceful cancellation of long-running operations.

    Based on asyncio.Event, supports:
    - Synchronous abort status check
    - Async wait for abort signal
    - Recording abort reason

    Examples:
        >>> signal = AbortSignal()
        >>>
        >>> # Trigger abort in another task
        >>> signal.abort("User cancelled")
        >>>
        >>> # Check in tool execution
        >>> if signal.is_aborted():
        >>>     return  # Early exit
        >>>
        >>> # Or async wait
        >>> await signal.wait()
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._children: list["AbortSignal"] = []
        self._sources: list["AbortSignal"] = []

    def abort(self, reason: str = "Operation cancelled"):
        """Trigger abort signal."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        for child in self._children:
            child.abort(reason)

    def is_aborted(self) -> bool:
        """Check if abort has been triggered."""
        return self._event.is_set()

    async def wait(self):
        """Async wait for abort signal."""
        await self._event.wait()

    @property
    def reason(self) -> str | None:
        """Get abort reason."""
        return self._reason

    def reset(self):
        """Reset abort signal for reuse."""
        self._event.clear()
        self._reason = None

    @classmethod
    def any(cls, *signals: "AbortSignal | None") -> "AbortSignal":
        """
        Merge signals: the result aborts as soon as any source aborts.

        Aborting the merged signal does not propagate back to the sources.
        Call ``release()`` on the result when done so the sources drop it.
        """
        merged = cls()
        for signal in signals:
            if signal is None:
                continue
            if signal.is_aborted():
                merged.abort(signal.reason or "Operation cancelled")
            else:
                signal._children.append(merged)
                merged._sources.append(signal)
        return merged

    def release(self):
        """Detach a merged signal from its sources once it is no longer needed."""
        for source in self._sources:
            if self in source._children:
                source._children.remove(self)
        self._sources = []


__all__ = ["AbortSignal"]
