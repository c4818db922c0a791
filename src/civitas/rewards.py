"""
RewardLedger: reward emission with anti-abuse gating.

Two reward sources, each with its own cooldown clock per user:

- education: ``floor(base_reward_amount * score / 100)`` per passed quiz
- voting: ``(votes_verified + 1) * bonus_multiplier`` per attested vote

Each (user, source id) pair can pay out at most once; the claim marker is
write-once. The per-user cap is checked against the running total
*before* the new amount is added, so the claim that crosses the cap is
allowed and every later one is refused.

Settlement happens before the claim is committed. If the sink fails the
result is TokenMintFailed and a retry starts from unchanged state.

The ledger keeps its own participant list. It never consults the
IdentityRegistry; callers register participants explicitly.
"""
from __future__ import annotations

from typing import Dict, Optional, Set, Tuple

from civitas.clock import ClockSource
from civitas.component import Component
from civitas.config import RewardConfig
from civitas.digest import digests_match, sha256_hex
from civitas.errors import (
    ALREADY_CLAIMED,
    CAP_EXCEEDED,
    COOLDOWN_ACTIVE,
    INVALID_AMOUNT,
    INVALID_COOLDOWN,
    INVALID_PROOF,
    INVALID_SCORE,
    INVALID_SOURCE_ID,
    NOT_REGISTERED,
    SCORE_TOO_LOW,
    TOKEN_MINT_FAILED,
    Result,
)
from civitas.journal import Journal
from civitas.models import UserRewards
from civitas.settlement import NullSink, SettlementSink


class RewardLedger(Component):
    """Per-user reward accumulators, claim markers and the minted total."""

    receipt_prefix = "reward"

    def __init__(
        self,
        config: Optional[RewardConfig] = None,
        clock: Optional[ClockSource] = None,
        journal: Optional[Journal] = None,
        settlement: Optional[SettlementSink] = None,
    ):
        super().__init__(clock=clock, journal=journal)
        self.config = (config or RewardConfig()).copy()
        self.settlement: SettlementSink = settlement if settlement is not None else NullSink()
        self._rewards: Dict[str, UserRewards] = {}
        self._quiz_claims: Set[Tuple[str, int]] = set()
        self._vote_claims: Set[Tuple[str, int]] = set()
        self._attestations: Dict[int, bytes] = {}
        self._total_minted = 0

    def _gate(self, action: str, user: str, last_claim: int, current: UserRewards) -> Optional[Result]:
        """Cooldown then cap, shared by both reward sources."""
        cfg = self.config
        now = self.clock.height
        if now - last_claim < cfg.cooldown_blocks:
            return Result.failure(
                COOLDOWN_ACTIVE,
                f"{action} cooldown active until block {last_claim + cfg.cooldown_blocks}",
                available_at=last_claim + cfg.cooldown_blocks,
            )
        if current.total_rewards_claimed > cfg.max_rewards_per_user:
            return Result.failure(
                CAP_EXCEEDED,
                f"{user} has already claimed {current.total_rewards_claimed} "
                f"(cap {cfg.max_rewards_per_user})",
            )
        return None

    def _settle(self, user: str, amount: int, source: str) -> Optional[Result]:
        """Hand ``amount`` to the sink before any ledger state changes.

        A raising sink becomes TokenMintFailed; the caller then returns
        without touching accumulators, markers or the minted total, so
        the claim can be retried.
        """
        try:
            self.settlement.settle(user, amount, source)
        except Exception as e:
            return Result.failure(
                TOKEN_MINT_FAILED,
                f"settlement of {amount} to {user} failed: {e}",
                source=source,
                amount=amount,
            )
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def register_participant(self, user: str) -> Result[bool]:
        """Create a zeroed accumulator for ``user``. Repeat calls are no-ops.

        The value is True when an accumulator was created.
        """
        with self._lock:
            created = user not in self._rewards
            if created:
                self._rewards[user] = UserRewards()
            return self._emit("register_participant", Result.success(created), user=user, created=created)

    def claim_education_reward(self, user: str, quiz_id: int, score: int) -> Result[int]:
        """Pay ``user`` for passing ``quiz_id`` with ``score``; returns the amount."""
        cfg = self.config
        with self._lock:
            current = self._rewards.get(user)
            if current is None:
                return self._emit(
                    "education_claim",
                    Result.failure(NOT_REGISTERED, f"{user} is not a reward participant"),
                    user=user,
                    quiz_id=quiz_id,
                )
            key = (user, quiz_id)
            if key in self._quiz_claims:
                return self._emit(
                    "education_claim",
                    Result.failure(ALREADY_CLAIMED, f"quiz {quiz_id} reward already claimed"),
                    user=user,
                    quiz_id=quiz_id,
                )
            if score < cfg.min_score:
                return self._emit(
                    "education_claim",
                    Result.failure(SCORE_TOO_LOW, f"score {score} is below {cfg.min_score}"),
                    user=user,
                    quiz_id=quiz_id,
                )
            if score > cfg.max_score:
                return self._emit(
                    "education_claim",
                    Result.failure(INVALID_SCORE, f"score {score} is above {cfg.max_score}"),
                    user=user,
                    quiz_id=quiz_id,
                )
            if quiz_id < cfg.min_quiz_id or quiz_id > cfg.max_quiz_id:
                return self._emit(
                    "education_claim",
                    Result.failure(
                        INVALID_SOURCE_ID,
                        f"quiz id must be in [{cfg.min_quiz_id}, {cfg.max_quiz_id}], got {quiz_id}",
                    ),
                    user=user,
                    quiz_id=quiz_id,
                )
            gated = self._gate("education", user, current.last_education_claim, current)
            if gated is not None:
                return self._emit("education_claim", gated, user=user, quiz_id=quiz_id)

            amount = cfg.base_reward_amount * score // 100
            unsettled = self._settle(user, amount, f"education:{quiz_id}")
            if unsettled is not None:
                return self._emit("education_claim", unsettled, user=user, quiz_id=quiz_id)

            current.quizzes_completed += 1
            current.tokens_earned += amount
            current.total_rewards_claimed += amount
            current.last_education_claim = self.clock.height
            self._quiz_claims.add(key)
            self._total_minted += amount
            return self._emit("education_claim", Result.success(amount), user=user, quiz_id=quiz_id, amount=amount)

    def claim_voting_bonus(self, user: str, election_id: int, proof: bytes) -> Result[int]:
        """Pay the participation bonus for an attested vote; returns the amount."""
        with self._lock:
            current = self._rewards.get(user)
            if current is None:
                return self._emit(
                    "voting_claim",
                    Result.failure(NOT_REGISTERED, f"{user} is not a reward participant"),
                    user=user,
                    election_id=election_id,
                )
            key = (user, election_id)
            if key in self._vote_claims:
                return self._emit(
                    "voting_claim",
                    Result.failure(ALREADY_CLAIMED, f"election {election_id} bonus already claimed"),
                    user=user,
                    election_id=election_id,
                )
            expected = self._attestations.get(election_id)
            if expected is None or not digests_match(expected, proof):
                return self._emit(
                    "voting_claim",
                    Result.failure(INVALID_PROOF, f"proof does not match the attestation for election {election_id}"),
                    user=user,
                    election_id=election_id,
                )
            gated = self._gate("voting", user, current.last_voting_claim, current)
            if gated is not None:
                return self._emit("voting_claim", gated, user=user, election_id=election_id)

            votes = current.votes_verified + 1
            amount = votes * self.config.bonus_multiplier
            unsettled = self._settle(user, amount, f"voting:{election_id}")
            if unsettled is not None:
                return self._emit("voting_claim", unsettled, user=user, election_id=election_id)

            current.votes_verified = votes
            current.tokens_earned += amount
            current.total_rewards_claimed += amount
            current.last_voting_claim = self.clock.height
            self._vote_claims.add(key)
            self._total_minted += amount
            return self._emit("voting_claim", Result.success(amount), user=user, election_id=election_id, amount=amount)

    def attest_election(self, caller: str, election_id: int, proof: bytes) -> Result[bool]:
        """Authority-only: record the proof voters must present for ``election_id``."""
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit("attest_election", denied, caller=caller, election_id=election_id)
            self._attestations[election_id] = bytes(proof)
            return self._emit(
                "attest_election",
                Result.success(True),
                caller=caller,
                election_id=election_id,
                proof_sha256=sha256_hex(bytes(proof)),
            )

    def set_base_reward(self, caller: str, amount: int) -> Result[bool]:
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit("set_base_reward", denied, caller=caller, value=amount)
            if amount < 0:
                return self._emit(
                    "set_base_reward",
                    Result.failure(INVALID_AMOUNT, f"base reward cannot be negative, got {amount}"),
                    caller=caller,
                    value=amount,
                )
            self.config.base_reward_amount = amount
            return self._emit("set_base_reward", Result.success(True), caller=caller, value=amount)

    def set_cooldown(self, caller: str, blocks: int) -> Result[bool]:
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit("set_cooldown", denied, caller=caller, value=blocks)
            if blocks <= 0:
                return self._emit(
                    "set_cooldown",
                    Result.failure(INVALID_COOLDOWN, f"cooldown must be positive, got {blocks}"),
                    caller=caller,
                    value=blocks,
                )
            self.config.cooldown_blocks = blocks
            return self._emit("set_cooldown", Result.success(True), caller=caller, value=blocks)

    def set_max_rewards_per_user(self, caller: str, new_max: int) -> Result[bool]:
        return self._set_cap(caller, "set_max_rewards_per_user", "max_rewards_per_user", new_max)

    def reset_user(self, caller: str, user: str) -> Result[bool]:
        """
        Authority-only partial reset.

        Drops the accumulator but clears claim markers only for
        ``config.reset_source_id``; markers for other sources survive.
        """
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit("reset_user", denied, caller=caller, user=user)
            source_id = self.config.reset_source_id
            self._rewards.pop(user, None)
            self._quiz_claims.discard((user, source_id))
            self._vote_claims.discard((user, source_id))
            return self._emit("reset_user", Result.success(True), caller=caller, user=user)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_rewards(self, user: str) -> Optional[UserRewards]:
        with self._lock:
            current = self._rewards.get(user)
            return current.model_copy() if current is not None else None

    def get_total_minted(self) -> int:
        with self._lock:
            return self._total_minted

    def get_completion_marker(self, user: str, quiz_id: int) -> Optional[bool]:
        """True if the quiz reward was claimed, else None."""
        with self._lock:
            return True if (user, quiz_id) in self._quiz_claims else None

    def get_vote_marker(self, user: str, election_id: int) -> Optional[bool]:
        """True if the election bonus was claimed, else None."""
        with self._lock:
            return True if (user, election_id) in self._vote_claims else None

    def get_attestation(self, election_id: int) -> Optional[bytes]:
        with self._lock:
            return self._attestations.get(election_id)


__all__ = ["RewardLedger"]
