"""
Civic workflow: register -> complete quiz -> claim reward.

The three components share no lock and no transaction. A workflow is a
sequence of independent steps, and stopping half-way (identity
registered, ledger participant not yet created) is a valid state that
re-running the same workflow completes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from civitas.errors import ALREADY_REGISTERED, Result
from civitas.identity import IdentityRegistry
from civitas.quiz import QuizEngine
from civitas.rewards import RewardLedger


@dataclass
class StepResult:
    """Outcome of one workflow step."""

    step: str
    result: Result
    done: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "done": self.done, **self.result.to_dict()}


@dataclass
class WorkflowReport:
    """Ordered step outcomes. ``completed`` means every step is done."""

    steps: List[StepResult] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return bool(self.steps) and all(s.done for s in self.steps)

    def step(self, name: str) -> Optional[StepResult]:
        for s in self.steps:
            if s.step == name:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"completed": self.completed, "steps": [s.to_dict() for s in self.steps]}


class CivicWorkflow:
    """Drives the components in the usual order, tolerating partial completion."""

    def __init__(self, registry: IdentityRegistry, quizzes: QuizEngine, ledger: RewardLedger):
        self.registry = registry
        self.quizzes = quizzes
        self.ledger = ledger

    def enroll(self, caller: str, name: str, age: int, email: str) -> WorkflowReport:
        """Register the identity, then the reward participant.

        An existing identity counts as done, so a retry after a crash
        between the two steps finishes the enrolment.
        """
        report = WorkflowReport()
        registered = self.registry.register(caller, name, age, email)
        identity_done = registered.ok or registered.code == ALREADY_REGISTERED
        report.steps.append(StepResult("identity", registered, identity_done))
        if not identity_done:
            return report
        participant = self.ledger.register_participant(caller)
        report.steps.append(StepResult("participant", participant, participant.ok))
        return report

    def complete_quiz(self, caller: str, quiz_id: int, answers: Sequence[int]) -> WorkflowReport:
        """Submit answers and, on a pass, claim the education reward."""
        report = WorkflowReport()
        submitted = self.quizzes.submit(caller, quiz_id, answers)
        report.steps.append(StepResult("submit", submitted, submitted.ok))
        if not submitted.ok:
            return report
        claim = self.ledger.claim_education_reward(caller, quiz_id, submitted.value.score)
        report.steps.append(StepResult("claim", claim, claim.ok))
        return report


__all__ = [
    "StepResult",
    "WorkflowReport",
    "CivicWorkflow",
]
