"""Per-question answer state for an exam session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from .questions import Question


class SessionError(RuntimeError):
    """Base class for exam session problems."""


class SessionValidationError(SessionError):
    """Raised when a session operation receives invalid input."""


class UnknownQuestionError(SessionValidationError):
    """Raised when an operation names a question outside the session."""


@dataclass(slots=True)
class QuestionState:
    question_id: int
    selected_answer: str | None = None
    is_marked_for_review: bool = False
    time_spent: int = 0

    @property
    def is_answered(self) -> bool:
        return self.selected_answer is not None


@dataclass(frozen=True, slots=True)
class SessionSummary:
    answered: int
    marked: int
    unanswered: int
    total: int


class QuestionStateTracker:
    """Owns the ``question id -> QuestionState`` map of one session.

    Every mutation touches exactly one entry. Entries are created up front for
    each question and are only dropped together with the session.
    """

    def __init__(self, states: Iterable[QuestionState] = ()) -> None:
        self._states: dict[int, QuestionState] = {state.question_id: state for state in states}

    @classmethod
    def for_questions(cls, questions: Iterable[Question]) -> "QuestionStateTracker":
        return cls(QuestionState(question_id=question.id) for question in questions)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[QuestionState]:
        return iter(self._states.values())

    def _require(self, question_id: int) -> QuestionState:
        state = self._states.get(question_id)
        if state is None:
            raise UnknownQuestionError(f"Question {question_id} is not part of this session.")
        return state

    def select_answer(self, question_id: int, answer: str) -> QuestionState:
        if answer is None:
            raise SessionValidationError("An answer must be provided; use clear_answer instead.")
        state = self._require(question_id)
        state.selected_answer = answer
        return state

    def clear_answer(self, question_id: int) -> QuestionState:
        state = self._require(question_id)
        state.selected_answer = None
        return state

    def toggle_mark_for_review(self, question_id: int) -> QuestionState:
        state = self._require(question_id)
        state.is_marked_for_review = not state.is_marked_for_review
        return state

    def get_state(self, question_id: int) -> QuestionState:
        state = self._states.get(question_id)
        if state is None:
            return QuestionState(question_id=question_id)
        return state

    def summary(self, total: int) -> SessionSummary:
        answered = 0
        marked = 0
        for state in self._states.values():
            if state.is_answered:
                answered += 1
            if state.is_marked_for_review:
                marked += 1
        return SessionSummary(
            answered=answered,
            marked=marked,
            unanswered=max(total - answered, 0),
            total=total,
        )


def palette_status(state: QuestionState) -> str:
    if state.is_answered and state.is_marked_for_review:
        return "answered-marked"
    if state.is_answered:
        return "answered"
    if state.is_marked_for_review:
        return "marked"
    return "unanswered"


def review_status(question: Question, answer: str | None) -> str:
    if answer is None:
        return "unanswered"
    return "correct" if question.is_correct(answer) else "incorrect"


__all__ = [
    "QuestionState",
    "QuestionStateTracker",
    "SessionError",
    "SessionSummary",
    "SessionValidationError",
    "UnknownQuestionError",
    "palette_status",
    "review_status",
]
