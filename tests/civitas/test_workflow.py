"""
Tests for the civic workflow and the cross-component scenarios.
"""
from __future__ import annotations

import pytest

from civitas.clock import BlockClock
from civitas.errors import ALREADY_REGISTERED, INVALID_AGE, THRESHOLD_NOT_MET, UNAUTHORIZED
from civitas.identity import IdentityRegistry
from civitas.journal import Journal
from civitas.quiz import QuizEngine
from civitas.rewards import RewardLedger
from civitas.workflow import CivicWorkflow

ALICE = "ST1TEST"
ADMIN = "ST9ADMIN"


@pytest.fixture
def clock() -> BlockClock:
    return BlockClock()


@pytest.fixture
def parts(clock: BlockClock):
    journal = Journal()
    return (
        IdentityRegistry(clock=clock, journal=journal),
        QuizEngine(clock=clock, journal=journal),
        RewardLedger(clock=clock, journal=journal),
    )


@pytest.fixture
def flow(parts) -> CivicWorkflow:
    return CivicWorkflow(*parts)


def one_question(correct: int = 0):
    return [{"text": "Q1", "options": ["A", "B", "C", "D"], "correct_index": correct}]


class TestEnroll:
    """Tests for enrolment across registry and ledger."""

    def test_enrolls_in_both_components(self, flow: CivicWorkflow) -> None:
        report = flow.enroll(ALICE, "John Doe", 25, "john@example.com")

        assert report.completed is True
        assert flow.registry.get(ALICE) is not None
        assert flow.ledger.get_rewards(ALICE) is not None

    def test_stops_on_identity_failure(self, flow: CivicWorkflow) -> None:
        """Age 17: no record, id counter unchanged, ledger untouched."""
        report = flow.enroll(ALICE, "John Doe", 17, "john@example.com")

        assert report.completed is False
        assert report.step("identity").result.code == INVALID_AGE
        assert report.step("participant") is None
        assert flow.registry.count() == 0
        assert flow.ledger.get_rewards(ALICE) is None

    def test_resumes_partial_enrolment(self, flow: CivicWorkflow) -> None:
        """Registered but not yet a ledger participant is recoverable."""
        flow.registry.register(ALICE, "John Doe", 25, "john@example.com")
        assert flow.ledger.get_rewards(ALICE) is None

        report = flow.enroll(ALICE, "John Doe", 25, "john@example.com")

        assert report.step("identity").result.code == ALREADY_REGISTERED
        assert report.step("identity").done is True
        assert report.completed is True
        assert flow.ledger.get_rewards(ALICE) is not None


class TestCompleteQuiz:
    """Tests for submit-then-claim."""

    def test_pass_claims_reward(self, flow: CivicWorkflow, clock: BlockClock) -> None:
        flow.quizzes.create_quiz(ADMIN, "Warm-up", "", one_question(), 60)
        flow.quizzes.create_quiz(ADMIN, "Civics", "", one_question(), 60)
        flow.enroll(ALICE, "John Doe", 25, "john@example.com")
        clock.advance_to(100)

        report = flow.complete_quiz(ALICE, 1, [0])

        assert report.completed is True
        assert report.step("claim").result.value == 100
        assert flow.ledger.get_rewards(ALICE).quizzes_completed == 1

    def test_fail_does_not_claim(self, flow: CivicWorkflow, clock: BlockClock) -> None:
        flow.quizzes.create_quiz(ADMIN, "Warm-up", "", one_question(), 60)
        flow.quizzes.create_quiz(ADMIN, "Civics", "", one_question(), 60)
        flow.enroll(ALICE, "John Doe", 25, "john@example.com")
        clock.advance_to(100)

        report = flow.complete_quiz(ALICE, 1, [2])

        assert report.step("submit").result.code == THRESHOLD_NOT_MET
        assert report.step("claim") is None
        assert flow.quizzes.get_attempts(ALICE, 1) == 1
        assert flow.ledger.get_completion_marker(ALICE, 1) is None

    def test_report_serializes(self, flow: CivicWorkflow) -> None:
        report = flow.enroll(ALICE, "John Doe", 25, "john@example.com")
        data = report.to_dict()

        assert data["completed"] is True
        assert data["steps"][0]["step"] == "identity"
        assert data["steps"][0]["value"] == 0


class TestScenarios:
    """End-to-end scenarios."""

    def test_single_question_overwrite(self, parts) -> None:
        _, quizzes, _ = parts
        quizzes.create_quiz(ALICE, "Quiz", "", one_question(0), 60)

        first = quizzes.submit(ALICE, 0, [0])
        second = quizzes.submit(ALICE, 0, [1])

        assert (first.value.score, first.value.passed) == (100, True)
        assert second.code == THRESHOLD_NOT_MET
        completion = quizzes.get_completion(ALICE, 0)
        assert (completion.score, completion.passed) == (0, False)
        assert quizzes.get_attempts(ALICE, 0) == 2

    def test_unbound_authority_changes_nothing(self, parts) -> None:
        registry, quizzes, ledger = parts
        registry.register(ALICE, "John Doe", 25, "john@example.com")

        assert quizzes.set_max_quizzes(ADMIN, 10).code == UNAUTHORIZED
        assert registry.reset_user(ADMIN, ALICE).code == UNAUTHORIZED
        assert ledger.set_cooldown(ADMIN, 10).code == UNAUTHORIZED
        assert quizzes.config.max_quizzes == 50
        assert registry.get(ALICE) is not None
        assert ledger.config.cooldown_blocks == 100

    def test_authority_is_per_component(self, parts) -> None:
        registry, quizzes, ledger = parts
        registry.bind_authority(ADMIN)

        assert registry.set_max_users(ADMIN, 10).ok
        assert quizzes.set_max_quizzes(ADMIN, 10).code == UNAUTHORIZED
        assert ledger.bind_authority("someone-else").ok
        assert ledger.set_cooldown(ADMIN, 10).code == UNAUTHORIZED
