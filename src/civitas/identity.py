"""
IdentityRegistry: one identity per principal, one principal per (name, email).

Records live in an arena keyed by their integer id. Three indexes sit
beside it and are updated in the same locked step as the record:

    principal   -> id
    id          -> principal
    fingerprint -> id        (sha256(name + email), sybil resistance)

Invariant: every stored record has exactly one entry in each index.
Ids are never reused, so ``count()`` reports ids allocated.
"""
from __future__ import annotations

from typing import Dict, Optional

from civitas.clock import ClockSource
from civitas.component import Component
from civitas.config import RegistryConfig
from civitas.digest import digests_match, email_proof, fingerprint
from civitas.errors import (
    ALREADY_REGISTERED,
    CAPACITY_EXCEEDED,
    DUPLICATE_IDENTITY,
    INVALID_AGE,
    INVALID_EMAIL,
    INVALID_NAME,
    INVALID_PROOF,
    NOT_FOUND,
    NOT_VERIFIED,
    Result,
)
from civitas.journal import Journal
from civitas.models import IdentityRecord


class IdentityRegistry(Component):
    """Citizen identity store with sybil-resistant registration."""

    receipt_prefix = "identity"

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        clock: Optional[ClockSource] = None,
        journal: Optional[Journal] = None,
    ):
        super().__init__(clock=clock, journal=journal)
        self.config = (config or RegistryConfig()).copy()
        self._records: Dict[int, IdentityRecord] = {}
        self._id_of: Dict[str, int] = {}
        self._owner_of: Dict[int, str] = {}
        self._fingerprints: Dict[str, int] = {}
        self._next_id = 0

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_profile(self, name: str, age: int, email: str) -> Optional[Result]:
        cfg = self.config
        if age < cfg.min_age or age > cfg.max_age:
            return Result.failure(INVALID_AGE, f"age must be in [{cfg.min_age}, {cfg.max_age}], got {age}")
        if not name or len(name) > cfg.max_name_length:
            return Result.failure(INVALID_NAME, f"name must be 1..{cfg.max_name_length} characters")
        if not email or len(email) > cfg.max_email_length or "@" not in email:
            return Result.failure(
                INVALID_EMAIL,
                f"email must be 1..{cfg.max_email_length} characters and contain '@'",
            )
        return None

    def _fingerprint_owner(self, fp: str) -> Optional[str]:
        user_id = self._fingerprints.get(fp)
        return self._owner_of.get(user_id) if user_id is not None else None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def register(self, caller: str, name: str, age: int, email: str) -> Result[int]:
        """Register ``caller``. Returns the newly allocated id."""
        with self._lock:
            if caller in self._id_of:
                return self._emit(
                    "register",
                    Result.failure(ALREADY_REGISTERED, f"{caller} already has an identity"),
                    caller=caller,
                )
            if self._next_id >= self.config.max_users:
                return self._emit(
                    "register",
                    Result.failure(CAPACITY_EXCEEDED, f"user cap of {self.config.max_users} reached"),
                    caller=caller,
                )
            invalid = self._validate_profile(name, age, email)
            if invalid is not None:
                return self._emit("register", invalid, caller=caller)

            fp = fingerprint(name, email)
            owner = self._fingerprint_owner(fp)
            if owner is not None and owner != caller:
                return self._emit(
                    "register",
                    Result.failure(DUPLICATE_IDENTITY, "name and email already belong to another principal"),
                    caller=caller,
                    fingerprint=fp,
                )

            user_id = self._next_id
            now = self.clock.height
            self._records[user_id] = IdentityRecord(
                id=user_id,
                name=name,
                age=age,
                email=email,
                registered_at=now,
                verified=False,
                last_update=now,
                contributions=0,
            )
            self._id_of[caller] = user_id
            self._owner_of[user_id] = caller
            self._fingerprints[fp] = user_id
            self._next_id += 1
            return self._emit("register", Result.success(user_id), caller=caller, id=user_id, fingerprint=fp)

    def verify(self, user: str, proof: bytes) -> Result[bool]:
        """Mark ``user`` verified if ``proof`` is the sha256 digest of their email."""
        with self._lock:
            user_id = self._id_of.get(user)
            if user_id is None:
                return self._emit("verify", Result.failure(NOT_FOUND, f"no identity for {user}"), user=user)
            record = self._records[user_id]
            if record.verified:
                return self._emit(
                    "verify",
                    Result.failure(INVALID_PROOF, "identity is already verified"),
                    user=user,
                )
            if not digests_match(email_proof(record.email), proof):
                return self._emit(
                    "verify",
                    Result.failure(INVALID_PROOF, "proof does not match the registered email"),
                    user=user,
                )
            record.verified = True
            record.last_update = self.clock.height
            return self._emit("verify", Result.success(True), user=user, id=user_id)

    def update(self, caller: str, new_name: str, new_age: int, new_email: str) -> Result[bool]:
        """Replace the caller's profile, moving its fingerprint claim."""
        with self._lock:
            user_id = self._id_of.get(caller)
            if user_id is None:
                return self._emit("update", Result.failure(NOT_FOUND, f"no identity for {caller}"), caller=caller)
            invalid = self._validate_profile(new_name, new_age, new_email)
            if invalid is not None:
                return self._emit("update", invalid, caller=caller)

            new_fp = fingerprint(new_name, new_email)
            owner = self._fingerprint_owner(new_fp)
            if owner is not None and owner != caller:
                return self._emit(
                    "update",
                    Result.failure(DUPLICATE_IDENTITY, "name and email already belong to another principal"),
                    caller=caller,
                    fingerprint=new_fp,
                )

            record = self._records[user_id]
            old_fp = fingerprint(record.name, record.email)
            del self._fingerprints[old_fp]
            self._fingerprints[new_fp] = user_id
            record.name = new_name
            record.age = new_age
            record.email = new_email
            record.last_update = self.clock.height
            record.contributions += 1
            return self._emit("update", Result.success(True), caller=caller, id=user_id, fingerprint=new_fp)

    def increment_contributions(self, user: str) -> Result[int]:
        """Count a civic action for a verified user; returns the new total."""
        with self._lock:
            user_id = self._id_of.get(user)
            if user_id is None:
                return self._emit(
                    "increment_contributions",
                    Result.failure(NOT_FOUND, f"no identity for {user}"),
                    user=user,
                )
            record = self._records[user_id]
            if not record.verified:
                return self._emit(
                    "increment_contributions",
                    Result.failure(NOT_VERIFIED, f"{user} has not verified their email"),
                    user=user,
                )
            record.contributions += 1
            record.last_update = self.clock.height
            return self._emit(
                "increment_contributions",
                Result.success(record.contributions),
                user=user,
                contributions=record.contributions,
            )

    def reset_user(self, caller: str, user: str) -> Result[bool]:
        """Authority-only removal of ``user`` and all of its index entries."""
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit("reset_user", denied, caller=caller, user=user)
            user_id = self._id_of.pop(user, None)
            if user_id is not None:
                record = self._records.pop(user_id)
                del self._owner_of[user_id]
                self._fingerprints.pop(fingerprint(record.name, record.email), None)
            return self._emit("reset_user", Result.success(True), caller=caller, user=user, removed=user_id is not None)

    def set_max_users(self, caller: str, new_max: int) -> Result[bool]:
        return self._set_cap(caller, "set_max_users", "max_users", new_max)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, user: str) -> Optional[IdentityRecord]:
        with self._lock:
            user_id = self._id_of.get(user)
            if user_id is None:
                return None
            return self._records[user_id].model_copy(deep=True)

    def get_by_id(self, user_id: int) -> Optional[IdentityRecord]:
        with self._lock:
            record = self._records.get(user_id)
            return record.model_copy(deep=True) if record is not None else None

    def owner_of(self, user_id: int) -> Optional[str]:
        """Principal holding ``user_id``, or None."""
        with self._lock:
            return self._owner_of.get(user_id)

    def is_verified(self, user: str) -> bool:
        with self._lock:
            user_id = self._id_of.get(user)
            return user_id is not None and self._records[user_id].verified

    def count(self) -> int:
        with self._lock:
            return self._next_id


__all__ = ["IdentityRegistry"]
