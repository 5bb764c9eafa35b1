"""The exam session state machine.

A :class:`SessionController` owns at most one :class:`ExamSession`. It is an
explicitly constructed object: whoever needs a session builds a controller
around a store, and the controller saves the session after every mutation so
the owner can pick it up again on the next request or reload.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Protocol, Sequence

from .questions import Question
from .state import (
    QuestionState,
    QuestionStateTracker,
    SessionError,
    SessionSummary,
    SessionValidationError,
)
from .timer import TIMED_MODES

logger = logging.getLogger(__name__)

SESSION_MODES = ("exam", "browse", "review", "instant")
INSTANT_PAPER_ID = 0


class NoActiveSessionError(SessionError):
    """Raised when an answer operation runs without a session."""


class ReadOnlySessionError(SessionValidationError):
    """Raised when a review session receives an answer mutation."""


class SessionStore(Protocol):
    def load(self) -> "ExamSession | None": ...

    def save(self, session: "ExamSession") -> None: ...

    def clear(self) -> None: ...


@dataclass(slots=True)
class ExamSession:
    paper_id: int
    mode: str
    questions: list[Question]
    tracker: QuestionStateTracker
    current_index: int = 0
    time_remaining: int = 0
    duration_seconds: int = 0
    is_timer_running: bool = False
    is_paused: bool = False
    read_only: bool = False
    attempt_id: int | None = None
    exam_id: int | None = None

    @property
    def question_states(self) -> dict[int, QuestionState]:
        return {state.question_id: state for state in self.tracker}

    @property
    def is_timed(self) -> bool:
        return self.mode in TIMED_MODES


class SessionController:
    def __init__(self, store: SessionStore | None = None) -> None:
        self._store = store
        self._ticker: Any = None
        self._batch_depth = 0
        self._dirty = False
        self.session: ExamSession | None = None
        self.restore()

    def restore(self) -> ExamSession | None:
        if self._store is None:
            return self.session
        self.session = self._store.load()
        return self.session

    def _persist(self) -> None:
        if self._batch_depth:
            self._dirty = True
            return
        if self._store is None:
            return
        if self.session is None:
            self._store.clear()
        else:
            self._store.save(self.session)

    @contextmanager
    def batched(self) -> Iterator["SessionController"]:
        """Group several mutations into a single save."""

        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._dirty = False
                self._persist()

    @property
    def store(self) -> SessionStore | None:
        return self._store

    @property
    def ticker(self) -> Any:
        return self._ticker

    def attach_ticker(self, ticker: Any) -> None:
        self.detach_ticker()
        self._ticker = ticker
        if self.session is not None and self.session.is_timer_running:
            self._arm()

    def detach_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _arm(self) -> None:
        if self._ticker is not None and not self._ticker.active:
            self._ticker.start(self.update_timer)

    def _disarm(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()

    def start_session(
        self,
        paper_id: int,
        questions: Sequence[Question],
        mode: str,
        duration_minutes: int,
        *,
        exam_id: int | None = None,
    ) -> ExamSession:
        if mode not in SESSION_MODES:
            raise SessionValidationError(f"Unsupported session mode: {mode}")
        if duration_minutes < 0:
            raise SessionValidationError("Duration cannot be negative.")

        timed = mode in TIMED_MODES
        time_remaining = duration_minutes * 60 if timed else 0
        questions = list(questions)

        self._disarm()
        self.session = ExamSession(
            paper_id=paper_id,
            mode=mode,
            questions=questions,
            tracker=QuestionStateTracker.for_questions(questions),
            time_remaining=time_remaining,
            duration_seconds=time_remaining,
            is_timer_running=timed and time_remaining > 0,
            exam_id=exam_id,
        )
        if self.session.is_timer_running:
            self._arm()
        logger.info(
            "Started %s session for paper %s with %d questions", mode, paper_id, len(questions)
        )
        self._persist()
        return self.session

    def start_review(
        self,
        paper_id: int,
        questions: Sequence[Question],
        responses: Mapping[int, str],
    ) -> ExamSession:
        """Open a read-only session replaying stored responses."""

        questions = list(questions)
        tracker = QuestionStateTracker.for_questions(questions)
        for question_id, answer in responses.items():
            if question_id in tracker and answer is not None:
                tracker.select_answer(question_id, answer)

        self._disarm()
        self.session = ExamSession(
            paper_id=paper_id,
            mode="review",
            questions=questions,
            tracker=tracker,
            read_only=True,
        )
        self._persist()
        return self.session

    def pause_session(self) -> None:
        session = self.session
        if session is None:
            return
        session.is_paused = True
        session.is_timer_running = False
        self._disarm()
        self._persist()

    def resume_session(self) -> None:
        session = self.session
        if session is None:
            return
        session.is_paused = False
        session.is_timer_running = session.is_timed and session.time_remaining > 0
        if session.is_timer_running:
            self._arm()
        self._persist()

    def end_session(self) -> None:
        self._disarm()
        self.session = None
        self._persist()

    def go_to_question(self, index: int) -> None:
        session = self.session
        if session is None or not 0 <= index < len(session.questions):
            return
        session.current_index = index
        self._persist()

    def next_question(self) -> None:
        session = self.session
        if session is None or session.current_index >= len(session.questions) - 1:
            return
        session.current_index += 1
        self._persist()

    def previous_question(self) -> None:
        session = self.session
        if session is None or session.current_index <= 0:
            return
        session.current_index -= 1
        self._persist()

    def _writable_session(self) -> ExamSession:
        if self.session is None:
            raise NoActiveSessionError("No exam session is active.")
        if self.session.read_only:
            raise ReadOnlySessionError("Review sessions cannot be changed.")
        return self.session

    def select_answer(self, question_id: int, answer_text: str) -> QuestionState:
        session = self._writable_session()
        state = session.tracker.select_answer(question_id, answer_text)
        self._persist()
        return state

    def clear_answer(self, question_id: int) -> QuestionState:
        session = self._writable_session()
        state = session.tracker.clear_answer(question_id)
        self._persist()
        return state

    def toggle_mark_for_review(self, question_id: int) -> QuestionState:
        session = self._writable_session()
        state = session.tracker.toggle_mark_for_review(question_id)
        self._persist()
        return state

    def update_timer(self) -> None:
        """Advance the countdown by one second.

        Reaching zero only stops the clock; submitting is left to the caller.
        """

        session = self.session
        if session is None or not session.is_timer_running or session.time_remaining <= 0:
            return
        session.time_remaining -= 1
        if session.time_remaining == 0:
            session.is_timer_running = False
            self._disarm()
            logger.info("Time is up for paper %s", session.paper_id)
        self._persist()

    def is_expired(self) -> bool:
        session = self.session
        return session is not None and session.is_timed and session.time_remaining == 0

    def current_question(self) -> Question | None:
        session = self.session
        if session is None or not session.questions:
            return None
        return session.questions[session.current_index]

    def get_state(self, question_id: int) -> QuestionState:
        if self.session is None:
            return QuestionState(question_id=question_id)
        return self.session.tracker.get_state(question_id)

    def session_summary(self) -> SessionSummary:
        if self.session is None:
            return SessionSummary(answered=0, marked=0, unanswered=0, total=0)
        return self.session.tracker.summary(len(self.session.questions))


__all__ = [
    "ExamSession",
    "INSTANT_PAPER_ID",
    "NoActiveSessionError",
    "ReadOnlySessionError",
    "SESSION_MODES",
    "SessionController",
    "SessionStore",
]
