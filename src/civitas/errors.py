"""
Failure taxonomy for the Civitas rule engine.

Every mutating operation returns a ``Result``: either a success payload or
exactly one named ``Failure``. Failures are values, not exceptions. A
rejected call never writes; the one exception is ``ThresholdNotMet``,
which is reported *after* the quiz submission has been recorded.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------

# Shared
UNAUTHORIZED = "Unauthorized"
ALREADY_BOUND = "AlreadyBound"
NOT_FOUND = "NotFound"
CAPACITY_EXCEEDED = "CapacityExceeded"
INVALID_CAP = "InvalidCap"

# IdentityRegistry
ALREADY_REGISTERED = "AlreadyRegistered"
INVALID_AGE = "InvalidAge"
INVALID_NAME = "InvalidName"
INVALID_EMAIL = "InvalidEmail"
DUPLICATE_IDENTITY = "DuplicateIdentity"
INVALID_PROOF = "InvalidProof"
NOT_VERIFIED = "NotVerified"

# QuizEngine
INVALID_QUESTION_SET = "InvalidQuestionSet"
INVALID_THRESHOLD = "InvalidThreshold"
ANSWER_COUNT_MISMATCH = "AnswerCountMismatch"
THRESHOLD_NOT_MET = "ThresholdNotMet"

# RewardLedger
NOT_REGISTERED = "NotRegistered"
ALREADY_CLAIMED = "AlreadyClaimed"
SCORE_TOO_LOW = "ScoreTooLow"
INVALID_SCORE = "InvalidScore"
INVALID_SOURCE_ID = "InvalidSourceId"
COOLDOWN_ACTIVE = "CooldownActive"
CAP_EXCEEDED = "CapExceeded"
INVALID_AMOUNT = "InvalidAmount"
INVALID_COOLDOWN = "InvalidCooldown"
TOKEN_MINT_FAILED = "TokenMintFailed"

# Outcomes reported after the write they describe has been committed.
COMMITTED_CODES = frozenset({THRESHOLD_NOT_MET})


@dataclass
class Failure:
    """A single named failure."""

    code: str
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)

    @property
    def committed(self) -> bool:
        """True when the operation wrote state before reporting this failure."""
        return self.code in COMMITTED_CODES

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.detail:
            d["detail"] = dict(self.detail)
        return d

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class CivitasError(Exception):
    """Raised by ``Result.unwrap`` when the result is a failure."""

    def __init__(self, failure: Failure):
        super().__init__(str(failure))
        self.failure = failure

    @property
    def code(self) -> str:
        return self.failure.code


@dataclass
class Result(Generic[T]):
    """Success payload or failure of a single operation."""

    ok: bool
    value: Optional[T] = None
    error: Optional[Failure] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        value: Optional[T] = None,
        **detail: Any,
    ) -> "Result[T]":
        return cls(ok=False, value=value, error=Failure(code=code, message=message, detail=detail))

    @property
    def code(self) -> Optional[str]:
        """Failure code, or None on success."""
        return self.error.code if self.error is not None else None

    def unwrap(self) -> T:
        """Return the value, raising CivitasError on failure."""
        if not self.ok:
            assert self.error is not None
            raise CivitasError(self.error)
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"ok": self.ok}
        if self.value is not None:
            dump = getattr(self.value, "model_dump", None)
            d["value"] = dump(mode="json") if callable(dump) else self.value
        if self.error is not None:
            d["error"] = self.error.to_dict()
        return d


__all__ = [
    "Failure",
    "Result",
    "CivitasError",
    "COMMITTED_CODES",
    "UNAUTHORIZED",
    "ALREADY_BOUND",
    "NOT_FOUND",
    "CAPACITY_EXCEEDED",
    "INVALID_CAP",
    "ALREADY_REGISTERED",
    "INVALID_AGE",
    "INVALID_NAME",
    "INVALID_EMAIL",
    "DUPLICATE_IDENTITY",
    "INVALID_PROOF",
    "NOT_VERIFIED",
    "INVALID_QUESTION_SET",
    "INVALID_THRESHOLD",
    "ANSWER_COUNT_MISMATCH",
    "THRESHOLD_NOT_MET",
    "NOT_REGISTERED",
    "ALREADY_CLAIMED",
    "SCORE_TOO_LOW",
    "INVALID_SCORE",
    "INVALID_SOURCE_ID",
    "COOLDOWN_ACTIVE",
    "CAP_EXCEEDED",
    "INVALID_AMOUNT",
    "INVALID_COOLDOWN",
    "TOKEN_MINT_FAILED",
]
