"""Scoring and attempt submission for exam sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from .questions import Question
from .session import ExamSession, NoActiveSessionError, SessionController
from .state import SessionError, SessionValidationError, review_status
from .timer import TIMED_MODES

logger = logging.getLogger(__name__)


class EmptySessionError(SessionError):
    """Raised when a session without questions is scored."""


class SubmissionNotAllowedError(SessionValidationError):
    """Raised when a non-timed session is submitted as an attempt."""


class SubmissionError(RuntimeError):
    """Raised by submission backends when an attempt could not be recorded."""


@dataclass(frozen=True, slots=True)
class ScoreResult:
    score: int
    correct: int
    total: int
    time_spent: int
    responses: dict[int, str]


@dataclass(frozen=True, slots=True)
class SubmissionPayload:
    paper_id: int
    exam_id: int | None
    mode: str
    responses: dict[int, str]
    score: int
    total_questions: int
    time_spent: int
    question_ids: list[int]


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    attempt_id: int
    score: int
    total_questions: int
    time_spent: int


@dataclass(frozen=True, slots=True)
class GradedQuestion:
    question: Question
    answer: str | None
    status: str


@dataclass(frozen=True, slots=True)
class GradeReport:
    items: list[GradedQuestion]
    correct: int
    incorrect: int
    unanswered: int

    @property
    def total(self) -> int:
        return len(self.items)


def percentage(correct: int, total: int) -> int:
    """``100 * correct / total`` rounded half up to an integer."""

    if total <= 0:
        raise EmptySessionError("Cannot score a session without questions.")
    return (200 * correct + total) // (2 * total)


def time_spent(duration_seconds: int, time_remaining: int) -> int:
    if time_remaining > 0:
        return duration_seconds - time_remaining
    return duration_seconds


def compute_score(session: ExamSession) -> ScoreResult:
    total = len(session.questions)
    if total == 0:
        raise EmptySessionError("Cannot score a session without questions.")

    correct = 0
    responses: dict[int, str] = {}
    for question in session.questions:
        state = session.tracker.get_state(question.id)
        if not state.is_answered:
            continue
        responses[question.id] = state.selected_answer
        if question.is_correct(state.selected_answer):
            correct += 1

    return ScoreResult(
        score=percentage(correct, total),
        correct=correct,
        total=total,
        time_spent=time_spent(session.duration_seconds, session.time_remaining),
        responses=responses,
    )


def build_submission(session: ExamSession) -> SubmissionPayload:
    result = compute_score(session)
    return SubmissionPayload(
        paper_id=session.paper_id,
        exam_id=session.exam_id,
        mode=session.mode,
        responses=result.responses,
        score=result.score,
        total_questions=result.total,
        time_spent=result.time_spent,
        question_ids=[question.id for question in session.questions],
    )


def grade_responses(
    questions: Iterable[Question], responses: Mapping[int, str | None]
) -> GradeReport:
    items: list[GradedQuestion] = []
    counts = {"correct": 0, "incorrect": 0, "unanswered": 0}
    for question in questions:
        answer = responses.get(question.id)
        status = review_status(question, answer)
        counts[status] += 1
        items.append(GradedQuestion(question=question, answer=answer, status=status))
    return GradeReport(items=items, **counts)


class AttemptSubmitter:
    """Turns the active session into a recorded attempt.

    ``submit_fn`` receives a :class:`SubmissionPayload` and returns the new
    attempt id, raising :class:`SubmissionError` when the backend fails. A
    second ``submit`` while one is still running returns ``None``.
    """

    def __init__(self, submit_fn: Callable[[SubmissionPayload], int]) -> None:
        self._submit_fn = submit_fn
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def submit(self, controller: SessionController) -> SubmissionResult | None:
        if self._in_flight:
            logger.warning("Submission already in progress; ignoring duplicate request")
            return None

        self._in_flight = True
        try:
            session = controller.session
            if session is None:
                raise NoActiveSessionError("No exam session is active.")
            if session.mode not in TIMED_MODES:
                raise SubmissionNotAllowedError(
                    f"Sessions in {session.mode} mode cannot be submitted."
                )

            payload = build_submission(session)
            try:
                attempt_id = self._submit_fn(payload)
            except SubmissionError:
                logger.exception("Submitting attempt for paper %s failed", session.paper_id)
                raise
            controller.end_session()
        finally:
            self._in_flight = False

        logger.info(
            "Recorded attempt %s for paper %s with score %s",
            attempt_id,
            payload.paper_id,
            payload.score,
        )
        return SubmissionResult(
            attempt_id=attempt_id,
            score=payload.score,
            total_questions=payload.total_questions,
            time_spent=payload.time_spent,
        )


__all__ = [
    "AttemptSubmitter",
    "EmptySessionError",
    "GradeReport",
    "GradedQuestion",
    "ScoreResult",
    "SubmissionError",
    "SubmissionNotAllowedError",
    "SubmissionPayload",
    "SubmissionResult",
    "build_submission",
    "compute_score",
    "grade_responses",
    "percentage",
    "time_spent",
]
