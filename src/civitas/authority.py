"""
Authority binding.

Each component has exactly one administrative principal, bound once at
bootstrap. Until it is bound, every authority-only operation is refused:
the gate fails closed.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from civitas.errors import ALREADY_BOUND, UNAUTHORIZED, Result


@dataclass
class AuthorityVerdict:
    """
    Result of an authority check.

    Attributes:
        allowed: Whether the caller may perform the administrative action
        reason: "OK", "AUTHORITY_UNBOUND" or "NOT_AUTHORITY"
    """
    allowed: bool
    reason: str = "OK"


class AuthoritySlot:
    """One-shot settable authority principal, scoped to one component."""

    def __init__(self) -> None:
        self._principal: Optional[str] = None

    @property
    def principal(self) -> Optional[str]:
        return self._principal

    @property
    def is_bound(self) -> bool:
        return self._principal is not None

    def bind(self, principal: str) -> Result[bool]:
        """Bind the authority. Every call after the first fails, whatever the argument."""
        if self._principal is not None:
            return Result.failure(
                ALREADY_BOUND,
                "authority is already bound",
                principal=self._principal,
            )
        self._principal = principal
        return Result.success(True)

    def check(self, caller: str) -> AuthorityVerdict:
        """
        Gate an administrative call.

        Examples:
            >>> slot = AuthoritySlot()
            >>> slot.check("alice")
            AuthorityVerdict(allowed=False, reason='AUTHORITY_UNBOUND')
            >>> _ = slot.bind("alice")
            >>> slot.check("bob")
            AuthorityVerdict(allowed=False, reason='NOT_AUTHORITY')
            >>> slot.check("alice")
            AuthorityVerdict(allowed=True, reason='OK')
        """
        if self._principal is None:
            return AuthorityVerdict(allowed=False, reason="AUTHORITY_UNBOUND")
        if caller != self._principal:
            return AuthorityVerdict(allowed=False, reason="NOT_AUTHORITY")
        return AuthorityVerdict(allowed=True)

    def deny(self, caller: str) -> Optional[Result]:
        """Return an Unauthorized result when ``caller`` is refused, else None."""
        verdict = self.check(caller)
        if verdict.allowed:
            return None
        return Result.failure(UNAUTHORIZED, f"{caller} is not the authority", reason=verdict.reason)


__all__ = [
    "AuthorityVerdict",
    "AuthoritySlot",
]
