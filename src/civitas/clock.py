"""
Block-height clock.

The execution environment owns the clock. Components only read
``height``; advancing it is the caller's job.
"""
from __future__ import annotations

import threading
from typing import Protocol


class ClockSource(Protocol):
    """Anything exposing a monotonic integer ``height``."""

    @property
    def height(self) -> int: ...


class BlockClock:
    """Monotonic, externally advanced block height."""

    def __init__(self, height: int = 0):
        if height < 0:
            raise ValueError(f"Block height cannot be negative: {height}")
        self._height = height
        self._lock = threading.Lock()

    @property
    def height(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        """Move forward by ``blocks`` and return the new height."""
        if blocks < 0:
            raise ValueError(f"Cannot advance by a negative amount: {blocks}")
        with self._lock:
            self._height += blocks
            return self._height

    def advance_to(self, height: int) -> int:
        """Jump to ``height``. Moving backwards is an error."""
        with self._lock:
            if height < self._height:
                raise ValueError(
                    f"Block height is monotonic: {height} < {self._height}"
                )
            self._height = height
            return self._height

    def __repr__(self) -> str:
        return f"BlockClock(height={self._height})"


__all__ = [
    "ClockSource",
    "BlockClock",
]
