"""
QuizEngine: quiz authoring and grading.

Quizzes get monotonically increasing ids starting at 0; deleted ids are
not reused. Each (user, quiz) pair has one completion record, overwritten
on every submission, and an attempt counter that only goes up.

A failing score is still a recorded submission: ``submit`` writes the
completion and bumps the attempt counter, then reports ThresholdNotMet.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from civitas.clock import ClockSource
from civitas.component import Component
from civitas.config import QuizConfig
from civitas.errors import (
    ANSWER_COUNT_MISMATCH,
    CAPACITY_EXCEEDED,
    INVALID_QUESTION_SET,
    INVALID_THRESHOLD,
    NOT_FOUND,
    THRESHOLD_NOT_MET,
    UNAUTHORIZED,
    Result,
)
from civitas.journal import Journal
from civitas.models import Completion, Question, Quiz, SubmissionOutcome

QuestionInput = Union[Question, Mapping[str, Any]]


def score_answers(questions: Sequence[Question], answers: Sequence[int]) -> int:
    """floor(100 * correct / total)."""
    correct = sum(1 for q, a in zip(questions, answers) if a == q.correct_index)
    return (100 * correct) // len(questions)


class QuizEngine(Component):
    """Quiz definitions plus per-user completions and attempt counts."""

    receipt_prefix = "quiz"

    def __init__(
        self,
        config: Optional[QuizConfig] = None,
        clock: Optional[ClockSource] = None,
        journal: Optional[Journal] = None,
    ):
        super().__init__(clock=clock, journal=journal)
        self.config = (config or QuizConfig()).copy()
        self._quizzes: Dict[int, Quiz] = {}
        self._completions: Dict[Tuple[str, int], Completion] = {}
        self._attempts: Dict[Tuple[str, int], int] = {}
        self._next_quiz_id = 0

    def _threshold_error(self, threshold: int) -> Optional[Result]:
        cfg = self.config
        if threshold < cfg.min_threshold or threshold > cfg.max_threshold:
            return Result.failure(
                INVALID_THRESHOLD,
                f"threshold must be in [{cfg.min_threshold}, {cfg.max_threshold}], got {threshold}",
            )
        return None

    def _parse_questions(self, questions: Sequence[QuestionInput]) -> Union[List[Question], Result]:
        if len(questions) == 0 or len(questions) > self.config.max_questions:
            return Result.failure(
                INVALID_QUESTION_SET,
                f"a quiz needs 1..{self.config.max_questions} questions, got {len(questions)}",
            )
        parsed: List[Question] = []
        for index, raw in enumerate(questions):
            try:
                parsed.append(raw if isinstance(raw, Question) else Question.model_validate(raw))
            except ValidationError as e:
                return Result.failure(
                    INVALID_QUESTION_SET,
                    f"question {index} is malformed",
                    index=index,
                    errors=[err["msg"] for err in e.errors()],
                )
        return parsed

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create_quiz(
        self,
        caller: str,
        title: str,
        description: str,
        questions: Sequence[QuestionInput],
        threshold: int,
    ) -> Result[int]:
        """Store a new quiz authored by ``caller``; returns its id."""
        with self._lock:
            if self._next_quiz_id >= self.config.max_quizzes:
                return self._emit(
                    "create",
                    Result.failure(CAPACITY_EXCEEDED, f"quiz cap of {self.config.max_quizzes} reached"),
                    caller=caller,
                )
            parsed = self._parse_questions(questions)
            if isinstance(parsed, Result):
                return self._emit("create", parsed, caller=caller)
            invalid = self._threshold_error(threshold)
            if invalid is not None:
                return self._emit("create", invalid, caller=caller)

            quiz_id = self._next_quiz_id
            self._quizzes[quiz_id] = Quiz(
                title=title,
                description=description,
                questions=parsed,
                score_threshold=threshold,
                created_at=self.clock.height,
                creator=caller,
            )
            self._next_quiz_id += 1
            return self._emit(
                "create",
                Result.success(quiz_id),
                caller=caller,
                quiz_id=quiz_id,
                questions=len(parsed),
                threshold=threshold,
            )

    def submit(self, caller: str, quiz_id: int, answers: Sequence[int]) -> Result[SubmissionOutcome]:
        """
        Grade ``answers`` for ``caller`` and record the completion.

        On a failing score the result is ``ok=False`` with code
        ThresholdNotMet, but ``value`` still carries the outcome and the
        completion and attempt count have been written.
        """
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            if quiz is None:
                return self._emit(
                    "submit",
                    Result.failure(NOT_FOUND, f"quiz {quiz_id} does not exist"),
                    caller=caller,
                    quiz_id=quiz_id,
                )
            if len(answers) != len(quiz.questions):
                return self._emit(
                    "submit",
                    Result.failure(
                        ANSWER_COUNT_MISMATCH,
                        f"expected {len(quiz.questions)} answers, got {len(answers)}",
                    ),
                    caller=caller,
                    quiz_id=quiz_id,
                )

            score = score_answers(quiz.questions, answers)
            passed = score >= quiz.score_threshold
            key = (caller, quiz_id)
            self._completions[key] = Completion(submitted_at=self.clock.height, score=score, passed=passed)
            self._attempts[key] = self._attempts.get(key, 0) + 1

            outcome = SubmissionOutcome(score=score, passed=passed)
            if passed:
                result: Result[SubmissionOutcome] = Result.success(outcome)
            else:
                result = Result.failure(
                    THRESHOLD_NOT_MET,
                    f"score {score} is below the threshold of {quiz.score_threshold}",
                    value=outcome,
                    score=score,
                )
            return self._emit(
                "submit",
                result,
                caller=caller,
                quiz_id=quiz_id,
                score=score,
                passed=passed,
                attempt=self._attempts[key],
            )

    def update_threshold(self, caller: str, quiz_id: int, new_threshold: int) -> Result[bool]:
        """Creator-only change of the pass mark."""
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            if quiz is None:
                return self._emit(
                    "update_threshold",
                    Result.failure(NOT_FOUND, f"quiz {quiz_id} does not exist"),
                    caller=caller,
                    quiz_id=quiz_id,
                )
            if caller != quiz.creator:
                return self._emit(
                    "update_threshold",
                    Result.failure(UNAUTHORIZED, f"only the creator may change quiz {quiz_id}"),
                    caller=caller,
                    quiz_id=quiz_id,
                )
            invalid = self._threshold_error(new_threshold)
            if invalid is not None:
                return self._emit("update_threshold", invalid, caller=caller, quiz_id=quiz_id)
            quiz.score_threshold = new_threshold
            return self._emit(
                "update_threshold",
                Result.success(True),
                caller=caller,
                quiz_id=quiz_id,
                threshold=new_threshold,
            )

    def delete_quiz(self, caller: str, quiz_id: int) -> Result[bool]:
        """Authority-only removal. Completions and attempts are kept."""
        with self._lock:
            denied = self.authority.deny(caller)
            if denied is not None:
                return self._emit("delete", denied, caller=caller, quiz_id=quiz_id)
            if quiz_id not in self._quizzes:
                return self._emit(
                    "delete",
                    Result.failure(NOT_FOUND, f"quiz {quiz_id} does not exist"),
                    caller=caller,
                    quiz_id=quiz_id,
                )
            del self._quizzes[quiz_id]
            return self._emit("delete", Result.success(True), caller=caller, quiz_id=quiz_id)

    def set_max_quizzes(self, caller: str, new_max: int) -> Result[bool]:
        return self._set_cap(caller, "set_max_quizzes", "max_quizzes", new_max)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_quiz(self, quiz_id: int) -> Optional[Quiz]:
        with self._lock:
            quiz = self._quizzes.get(quiz_id)
            return quiz.model_copy(deep=True) if quiz is not None else None

    def get_completion(self, user: str, quiz_id: int) -> Optional[Completion]:
        with self._lock:
            completion = self._completions.get((user, quiz_id))
            return completion.model_copy() if completion is not None else None

    def get_attempts(self, user: str, quiz_id: int) -> Optional[int]:
        """Number of submissions, or None if the user never submitted."""
        with self._lock:
            return self._attempts.get((user, quiz_id))

    def count(self) -> int:
        """Quiz ids allocated so far."""
        with self._lock:
            return self._next_quiz_id


__all__ = ["QuizEngine", "score_answers"]
