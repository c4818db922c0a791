"""
Tests for the reward ledger.
"""
from __future__ import annotations

import pytest

from civitas.clock import BlockClock
from civitas.errors import (
    ALREADY_CLAIMED,
    CAP_EXCEEDED,
    COOLDOWN_ACTIVE,
    INVALID_AMOUNT,
    INVALID_CAP,
    INVALID_COOLDOWN,
    INVALID_PROOF,
    INVALID_SCORE,
    INVALID_SOURCE_ID,
    NOT_REGISTERED,
    SCORE_TOO_LOW,
    TOKEN_MINT_FAILED,
    UNAUTHORIZED,
)
from civitas.rewards import RewardLedger
from civitas.settlement import RecordingSink

ALICE = "ST1TEST"
BOB = "ST2TEST"
ADMIN = "ST9ADMIN"
PROOF = b"valid-proof-hash"


@pytest.fixture
def clock() -> BlockClock:
    return BlockClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ledger(clock: BlockClock, sink: RecordingSink) -> RewardLedger:
    ledger = RewardLedger(clock=clock, settlement=sink)
    ledger.bind_authority(ADMIN)
    return ledger


class TestRegisterParticipant:
    """Tests for participant registration."""

    def test_creates_zeroed_accumulator(self, ledger: RewardLedger) -> None:
        result = ledger.register_participant(ALICE)

        assert result.ok is True
        assert result.value is True
        rewards = ledger.get_rewards(ALICE)
        assert rewards.tokens_earned == 0
        assert rewards.last_education_claim == 0

    def test_is_idempotent(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """A repeat call neither fails nor resets the accumulator."""
        ledger.register_participant(ALICE)
        clock.advance_to(101)
        ledger.claim_education_reward(ALICE, 1, 80)

        again = ledger.register_participant(ALICE)

        assert again.ok is True
        assert again.value is False
        assert ledger.get_rewards(ALICE).tokens_earned == 80


class TestEducationReward:
    """Tests for quiz-completion rewards."""

    def test_distributes_reward(self, ledger: RewardLedger, clock: BlockClock, sink: RecordingSink) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(101)

        result = ledger.claim_education_reward(ALICE, 1, 80)

        assert result.ok is True
        assert result.value == 80
        rewards = ledger.get_rewards(ALICE)
        assert rewards.tokens_earned == 80
        assert rewards.total_rewards_claimed == 80
        assert rewards.quizzes_completed == 1
        assert rewards.last_education_claim == 101
        assert ledger.get_total_minted() == 80
        assert ledger.get_completion_marker(ALICE, 1) is True
        assert [(s.user, s.amount, s.source) for s in sink.settlements] == [(ALICE, 80, "education:1")]

    def test_amount_floors(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """floor(base * score / 100) with a base that does not divide evenly."""
        ledger.set_base_reward(ADMIN, 33)
        ledger.register_participant(ALICE)
        clock.advance_to(100)

        assert ledger.claim_education_reward(ALICE, 1, 75).value == 24

    def test_rejects_unregistered(self, ledger: RewardLedger) -> None:
        assert ledger.claim_education_reward("ST2UNREG", 1, 80).code == NOT_REGISTERED

    def test_rejects_low_score(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(101)
        assert ledger.claim_education_reward(ALICE, 1, 40).code == SCORE_TOO_LOW

    def test_rejects_score_above_hundred(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(101)
        assert ledger.claim_education_reward(ALICE, 1, 101).code == INVALID_SCORE

    @pytest.mark.parametrize("quiz_id", [0, 101])
    def test_rejects_source_id_out_of_range(self, ledger: RewardLedger, clock: BlockClock, quiz_id: int) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(101)
        assert ledger.claim_education_reward(ALICE, quiz_id, 80).code == INVALID_SOURCE_ID

    def test_new_participant_waits_one_cooldown(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """A zeroed accumulator counts block 0 as the last claim."""
        ledger.register_participant(ALICE)
        clock.advance_to(50)

        result = ledger.claim_education_reward(ALICE, 1, 80)

        assert result.code == COOLDOWN_ACTIVE
        assert result.error.detail["available_at"] == 100

    def test_rejects_during_cooldown(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        assert ledger.claim_education_reward(ALICE, 1, 80).ok
        clock.advance_to(199)

        assert ledger.claim_education_reward(ALICE, 2, 80).code == COOLDOWN_ACTIVE
        clock.advance_to(200)
        assert ledger.claim_education_reward(ALICE, 2, 80).ok

    def test_at_most_once_per_quiz(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """A repeated claim is refused and leaves the accumulator untouched."""
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        ledger.claim_education_reward(ALICE, 1, 80)
        before = ledger.get_rewards(ALICE)
        clock.advance_to(500)

        result = ledger.claim_education_reward(ALICE, 1, 100)

        assert result.code == ALREADY_CLAIMED
        assert ledger.get_rewards(ALICE) == before
        assert ledger.get_total_minted() == 80

    def test_markers_are_per_user(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        ledger.register_participant(BOB)
        clock.advance_to(100)
        ledger.claim_education_reward(ALICE, 1, 80)

        assert ledger.get_completion_marker(BOB, 1) is None
        assert ledger.claim_education_reward(BOB, 1, 80).ok

    def test_cap_allows_one_crossing_claim(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """The cap is checked before adding: the claim that crosses it succeeds once."""
        ledger.set_max_rewards_per_user(ADMIN, 150)
        ledger.register_participant(ALICE)

        clock.advance_to(100)
        assert ledger.claim_education_reward(ALICE, 1, 100).ok   # total 100
        clock.advance_to(200)
        assert ledger.claim_education_reward(ALICE, 2, 100).ok   # total 200, crosses 150
        clock.advance_to(300)
        result = ledger.claim_education_reward(ALICE, 3, 100)

        assert result.code == CAP_EXCEEDED
        assert ledger.get_rewards(ALICE).total_rewards_claimed == 200

    def test_cap_equal_total_still_claims(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """total == cap is not over the cap."""
        ledger.set_max_rewards_per_user(ADMIN, 100)
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        ledger.claim_education_reward(ALICE, 1, 100)
        clock.advance_to(200)

        assert ledger.claim_education_reward(ALICE, 2, 50).ok


class TestVotingBonus:
    """Tests for vote-participation bonuses."""

    def test_bonus_grows_with_votes(self, ledger: RewardLedger, clock: BlockClock, sink: RecordingSink) -> None:
        ledger.attest_election(ADMIN, 1, PROOF)
        ledger.attest_election(ADMIN, 2, b"second")
        ledger.register_participant(ALICE)

        clock.advance_to(100)
        first = ledger.claim_voting_bonus(ALICE, 1, PROOF)
        clock.advance_to(200)
        second = ledger.claim_voting_bonus(ALICE, 2, b"second")

        assert first.value == 50
        assert second.value == 100
        rewards = ledger.get_rewards(ALICE)
        assert rewards.votes_verified == 2
        assert rewards.tokens_earned == 150
        assert rewards.last_voting_claim == 200
        assert ledger.get_vote_marker(ALICE, 1) is True
        assert ledger.get_total_minted() == 150
        assert sink.total_for(ALICE) == 150

    def test_rejects_invalid_proof(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.attest_election(ADMIN, 1, PROOF)
        ledger.register_participant(ALICE)
        clock.advance_to(100)

        assert ledger.claim_voting_bonus(ALICE, 1, b"invalid").code == INVALID_PROOF

    def test_rejects_unattested_election(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(100)

        assert ledger.claim_voting_bonus(ALICE, 9, PROOF).code == INVALID_PROOF

    def test_rejects_unregistered(self, ledger: RewardLedger) -> None:
        ledger.attest_election(ADMIN, 1, PROOF)
        assert ledger.claim_voting_bonus("ST2UNREG", 1, PROOF).code == NOT_REGISTERED

    def test_rejects_repeat_claim(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.attest_election(ADMIN, 1, PROOF)
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        ledger.claim_voting_bonus(ALICE, 1, PROOF)
        clock.advance_to(300)

        assert ledger.claim_voting_bonus(ALICE, 1, PROOF).code == ALREADY_CLAIMED

    def test_cooldowns_are_independent(self, ledger: RewardLedger, clock: BlockClock) -> None:
        """An education claim does not start the voting cooldown."""
        ledger.attest_election(ADMIN, 1, PROOF)
        ledger.register_participant(ALICE)
        clock.advance_to(100)

        assert ledger.claim_education_reward(ALICE, 1, 80).ok
        assert ledger.claim_voting_bonus(ALICE, 1, PROOF).ok

    def test_voting_cooldown(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.attest_election(ADMIN, 1, PROOF)
        ledger.attest_election(ADMIN, 2, PROOF)
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        ledger.claim_voting_bonus(ALICE, 1, PROOF)
        clock.advance_to(150)

        assert ledger.claim_voting_bonus(ALICE, 2, PROOF).code == COOLDOWN_ACTIVE

    def test_attestation_requires_authority(self, ledger: RewardLedger) -> None:
        assert ledger.attest_election(ALICE, 1, PROOF).code == UNAUTHORIZED
        assert ledger.get_attestation(1) is None


class FlakySink:
    """Raises on the first ``failures`` settlements, then records."""

    def __init__(self, failures: int = 1) -> None:
        self.failures = failures
        self.settled = []

    def settle(self, user: str, amount: int, source: str) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("settlement backend down")
        self.settled.append((user, amount, source))


class TestSettlementFailure:
    """A failing sink refuses the claim and leaves the ledger untouched."""

    @pytest.fixture
    def flaky(self) -> FlakySink:
        return FlakySink()

    @pytest.fixture
    def flaky_ledger(self, clock: BlockClock, flaky: FlakySink) -> RewardLedger:
        ledger = RewardLedger(clock=clock, settlement=flaky)
        ledger.bind_authority(ADMIN)
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        return ledger

    def test_education_claim_is_retryable(self, flaky_ledger: RewardLedger, flaky: FlakySink) -> None:
        failed = flaky_ledger.claim_education_reward(ALICE, 1, 80)

        assert failed.code == TOKEN_MINT_FAILED
        assert "settlement backend down" in failed.error.message
        assert flaky_ledger.get_completion_marker(ALICE, 1) is None
        assert flaky_ledger.get_rewards(ALICE).tokens_earned == 0
        assert flaky_ledger.get_total_minted() == 0

        retried = flaky_ledger.claim_education_reward(ALICE, 1, 80)

        assert retried.ok is True
        assert retried.value == 80
        assert flaky.settled == [(ALICE, 80, "education:1")]
        assert flaky_ledger.get_total_minted() == 80

    def test_voting_claim_is_retryable(self, flaky_ledger: RewardLedger, flaky: FlakySink) -> None:
        flaky_ledger.attest_election(ADMIN, 1, PROOF)

        failed = flaky_ledger.claim_voting_bonus(ALICE, 1, PROOF)

        assert failed.code == TOKEN_MINT_FAILED
        assert flaky_ledger.get_vote_marker(ALICE, 1) is None
        assert flaky_ledger.get_rewards(ALICE).votes_verified == 0

        assert flaky_ledger.claim_voting_bonus(ALICE, 1, PROOF).value == 50
        assert flaky.settled == [(ALICE, 50, "voting:1")]

    def test_failure_is_journaled_as_rejected(self, flaky_ledger: RewardLedger) -> None:
        flaky_ledger.claim_education_reward(ALICE, 1, 80)

        receipt = flaky_ledger.journal.of_type("reward.education_claim")[-1]

        assert receipt["status"] == "rejected"
        assert receipt["code"] == TOKEN_MINT_FAILED


class TestAdministration:
    """Tests for authority-gated parameters and resets."""

    def test_set_cooldown(self, ledger: RewardLedger) -> None:
        assert ledger.set_cooldown(ADMIN, 200).ok is True
        assert ledger.config.cooldown_blocks == 200

    @pytest.mark.parametrize("blocks", [0, -5])
    def test_rejects_non_positive_cooldown(self, ledger: RewardLedger, blocks: int) -> None:
        assert ledger.set_cooldown(ADMIN, blocks).code == INVALID_COOLDOWN
        assert ledger.config.cooldown_blocks == 100

    def test_set_base_reward(self, ledger: RewardLedger) -> None:
        assert ledger.set_base_reward(ADMIN, 250).ok
        assert ledger.config.base_reward_amount == 250
        assert ledger.set_base_reward(ADMIN, -1).code == INVALID_AMOUNT

    def test_set_max_rewards_rejects_zero(self, ledger: RewardLedger) -> None:
        assert ledger.set_max_rewards_per_user(ADMIN, 0).code == INVALID_CAP

    def test_unbound_authority_fails_closed(self, clock: BlockClock) -> None:
        ledger = RewardLedger(clock=clock)
        ledger.register_participant(ALICE)

        assert ledger.set_cooldown(ADMIN, 200).code == UNAUTHORIZED
        assert ledger.set_base_reward(ADMIN, 5).code == UNAUTHORIZED
        assert ledger.set_max_rewards_per_user(ADMIN, 5).code == UNAUTHORIZED
        assert ledger.reset_user(ADMIN, ALICE).code == UNAUTHORIZED
        assert ledger.config.cooldown_blocks == 100
        assert ledger.config.base_reward_amount == 100
        assert ledger.get_rewards(ALICE) is not None

    def test_non_authority_rejected(self, ledger: RewardLedger) -> None:
        assert ledger.set_cooldown(ALICE, 200).code == UNAUTHORIZED

    def test_reset_clears_accumulator(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        ledger.claim_education_reward(ALICE, 1, 80)

        result = ledger.reset_user(ADMIN, ALICE)

        assert result.ok is True
        assert ledger.get_rewards(ALICE) is None
        assert ledger.get_total_minted() == 80

    def test_reset_only_clears_markers_for_source_one(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.attest_election(ADMIN, 1, PROOF)
        ledger.register_participant(ALICE)
        clock.advance_to(100)
        ledger.claim_education_reward(ALICE, 1, 80)
        ledger.claim_voting_bonus(ALICE, 1, PROOF)
        clock.advance_to(200)
        ledger.claim_education_reward(ALICE, 2, 80)

        ledger.reset_user(ADMIN, ALICE)

        assert ledger.get_completion_marker(ALICE, 1) is None
        assert ledger.get_vote_marker(ALICE, 1) is None
        assert ledger.get_completion_marker(ALICE, 2) is True


class TestCooldownProperty:
    """Successful claims of one type are at least a cooldown apart."""

    def test_claim_spacing(self, ledger: RewardLedger, clock: BlockClock) -> None:
        ledger.register_participant(ALICE)
        claimed_at = []
        quiz_id = 1
        for height in range(0, 1000, 37):
            clock.advance_to(height)
            if ledger.claim_education_reward(ALICE, quiz_id, 60).ok:
                claimed_at.append(height)
                quiz_id += 1

        assert len(claimed_at) >= 2
        for first, second in zip(claimed_at, claimed_at[1:]):
            assert second - first >= ledger.config.cooldown_blocks
