"""
Shared plumbing for the three Civitas components.

A component is a keyed store plus state transitions over it. Each one
owns its lock, its authority slot and a handle on the clock and audit
journal; nothing here is shared between component instances.
"""
from __future__ import annotations

import threading
from typing import Any, Optional

from civitas.authority import AuthoritySlot
from civitas.clock import BlockClock, ClockSource
from civitas.errors import INVALID_CAP, Result
from civitas.journal import Journal


class Component:
    """Base for IdentityRegistry, QuizEngine and RewardLedger."""

    #: Prefix for receipt types emitted by this component.
    receipt_prefix = "component"

    def __init__(
        self,
        clock: Optional[ClockSource] = None,
        journal: Optional[Journal] = None,
    ):
        self.clock: ClockSource = clock if clock is not None else BlockClock()
        self.journal = journal if journal is not None else Journal()
        self.authority = AuthoritySlot()
        self._lock = threading.RLock()

    @property
    def block_height(self) -> int:
        return self.clock.height

    def _emit(self, action: str, result: Result, **data: Any) -> Result:
        """Journal the outcome of ``action`` and pass ``result`` through."""
        if result.ok:
            status = "ok"
        elif result.error is not None and result.error.committed:
            status = "committed"
        else:
            status = "rejected"
        payload = {k: v for k, v in data.items() if v is not None}
        if result.error is not None:
            payload["code"] = result.error.code
        self.journal.emit(
            f"{self.receipt_prefix}.{action}",
            payload,
            block=self.clock.height,
            status=status,
        )
        return result

    def bind_authority(self, principal: str) -> Result[bool]:
        """Bind the administrative principal. Succeeds exactly once."""
        with self._lock:
            result = self.authority.bind(principal)
            return self._emit("bind_authority", result, principal=principal)

    def _set_cap(self, caller: str, action: str, attr: str, value: int) -> Result[bool]:
        """Authority-only update of a positive integer config field."""
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit(action, denied, caller=caller, value=value)
            if value <= 0:
                return self._emit(
                    action,
                    Result.failure(INVALID_CAP, f"{attr} must be positive, got {value}"),
                    caller=caller,
                    value=value,
                )
            setattr(self.config, attr, value)  # type: ignore[attr-defined]
            return self._emit(action, Result.success(True), caller=caller, value=value)


__all__ = ["Component"]
