"""
Token settlement sinks.

The ledger decides *how much* a claim is worth; moving the tokens is
someone else's job. Once a claim has passed every check, the ledger
calls ``sink.settle(user, amount, source)`` exactly once and commits the
claim only after it returns. A sink that raises leaves the ledger
unchanged and the claim is reported as TokenMintFailed.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import List, Protocol


class SettlementSink(Protocol):
    def settle(self, user: str, amount: int, source: str) -> None: ...


@dataclass(frozen=True)
class Settlement:
    user: str
    amount: int
    source: str


class NullSink:
    """Discards settlements."""

    def settle(self, user: str, amount: int, source: str) -> None:
        return None


class RecordingSink:
    """Keeps every settlement in memory, in call order."""

    def __init__(self) -> None:
        self._settlements: List[Settlement] = []
        self._lock = threading.Lock()

    def settle(self, user: str, amount: int, source: str) -> None:
        with self._lock:
            self._settlements.append(Settlement(user=user, amount=amount, source=source))

    @property
    def settlements(self) -> List[Settlement]:
        with self._lock:
            return list(self._settlements)

    def total_for(self, user: str) -> int:
        return sum(s.amount for s in self.settlements if s.user == user)


__all__ = [
    "SettlementSink",
    "Settlement",
    "NullSink",
    "RecordingSink",
]
