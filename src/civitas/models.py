"""
Records held by the Civitas components.

Stored records are mutated in place under the owning component's lock.
Reads hand out ``model_copy(deep=True)`` snapshots, never the stored object.
"""
from __future__ import annotations

from typing import List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

OPTION_COUNT = 4
MAX_QUESTION_LENGTH = 200
MAX_OPTION_LENGTH = 100


class IdentityRecord(BaseModel):
    """A registered citizen, keyed by owning principal."""

    model_config = ConfigDict(extra="forbid")

    id: int
    name: str
    age: int
    email: str
    registered_at: int
    verified: bool = False
    last_update: int
    contributions: int = 0


class Question(BaseModel):
    """Multiple-choice question with exactly four options."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    text: str = Field(
        min_length=1,
        max_length=MAX_QUESTION_LENGTH,
        validation_alias=AliasChoices("text", "question"),
    )
    options: List[str]
    correct_index: int = Field(
        ge=0,
        lt=OPTION_COUNT,
        strict=True,
        validation_alias=AliasChoices("correct_index", "correctIndex"),
    )

    @field_validator("options")
    @classmethod
    def _check_options(cls, options: List[str]) -> List[str]:
        if len(options) != OPTION_COUNT:
            raise ValueError(f"expected exactly {OPTION_COUNT} options, got {len(options)}")
        for option in options:
            if not option or len(option) > MAX_OPTION_LENGTH:
                raise ValueError(f"option length must be 1..{MAX_OPTION_LENGTH}")
        return options


class Quiz(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str
    questions: List[Question]
    score_threshold: int
    created_at: int
    creator: str


class Completion(BaseModel):
    """Latest submission by one user for one quiz."""

    model_config = ConfigDict(extra="forbid")

    submitted_at: int
    score: int = Field(ge=0, le=100)
    passed: bool


class SubmissionOutcome(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    score: int
    passed: bool


class UserRewards(BaseModel):
    """Per-user reward accumulator."""

    model_config = ConfigDict(extra="forbid")

    quizzes_completed: int = 0
    votes_verified: int = 0
    tokens_earned: int = 0
    last_education_claim: int = 0
    last_voting_claim: int = 0
    total_rewards_claimed: int = 0


__all__ = [
    "OPTION_COUNT",
    "MAX_QUESTION_LENGTH",
    "MAX_OPTION_LENGTH",
    "IdentityRecord",
    "Question",
    "Quiz",
    "Completion",
    "SubmissionOutcome",
    "UserRewards",
]
