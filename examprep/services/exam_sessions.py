"""Per-user exam sessions driven by the session engine.

Each request opens the user's stored session, catches the countdown up with
the wall-clock seconds elapsed since the last persisted tick anchor, serves
the request, and releases the tick on the way out.
"""

from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from functools import partial
from typing import Any, Callable, Iterator, Mapping

from flask import current_app

from .. import db
from ..engine.persistence import dumps_session, loads_session
from ..engine.scoring import (
    AttemptSubmitter,
    SubmissionError,
    SubmissionPayload,
    SubmissionResult,
)
from ..engine.session import INSTANT_PAPER_ID, ExamSession, SessionController
from ..engine.state import SessionValidationError
from ..engine.timer import ClockTicker, ticking
from ..models import SessionSnapshot, User
from .access import AccessDeniedError, ensure_paper_access, exam_access
from .attempts import attempt_questions, get_attempt, record_attempt, response_map
from .catalog import get_exam, get_paper, load_paper_questions
from .instant_tests import draw_questions, parse_instant_request

logger = logging.getLogger(__name__)

wall_clock: Callable[[], float] = time.time


class ExamSessionServiceError(RuntimeError):
    """Base class for exam session service problems."""


class SubmissionInProgressError(ExamSessionServiceError):
    """Raised when the session was already submitted by another request."""


class DatabaseSessionStore:
    """Session store backed by one ``session_snapshots`` row per user.

    ``holds_session`` is set once this store has read or written the row. A
    store that held the row never recreates it after another request has
    consumed it, so a stale request cannot resurrect a submitted session.
    """

    def __init__(self, user: User, name: str, ticker: ClockTicker | None = None) -> None:
        self.user = user
        self.name = name
        self.ticker = ticker
        self.holds_session = False

    def _record(self) -> SessionSnapshot | None:
        return SessionSnapshot.query.filter_by(user_id=self.user.id, name=self.name).first()

    def stored_anchor(self) -> float | None:
        record = self._record()
        return record.tick_anchor if record else None

    def load(self) -> ExamSession | None:
        record = self._record()
        if not record:
            return None
        self.holds_session = True
        return loads_session(record.payload)

    def save(self, session: ExamSession) -> None:
        record = self._record()
        if not record:
            if self.holds_session:
                logger.warning(
                    "Session for user %s was closed by another request; not saving",
                    self.user.id,
                )
                return
            record = SessionSnapshot(user_id=self.user.id, name=self.name, payload="")
            db.session.add(record)
        record.payload = dumps_session(session)
        record.tick_anchor = (
            self.ticker.anchor if self.ticker is not None and self.ticker.active else None
        )
        db.session.commit()
        self.holds_session = True

    def clear(self) -> None:
        record = self._record()
        if record:
            db.session.delete(record)
            db.session.commit()
        self.holds_session = False

    def consume(self) -> bool:
        """Delete the stored row without committing.

        Returns ``True`` only for the one caller that removed it; the caller
        commits together with whatever the consumed session turns into.
        """

        deleted = SessionSnapshot.query.filter_by(user_id=self.user.id, name=self.name).delete(
            synchronize_session=False
        )
        self.holds_session = False
        return deleted == 1


@contextmanager
def open_session(
    user: User, *, clock: Callable[[], float] | None = None
) -> Iterator[SessionController]:
    store = DatabaseSessionStore(user, current_app.config["SESSION_RECORD_NAME"])
    ticker = ClockTicker(clock=clock or wall_clock, anchor=store.stored_anchor())
    store.ticker = ticker
    controller = SessionController(store)
    with ticking(controller, ticker):
        with controller.batched():
            ticker.pump()
        yield controller


def start_session(
    user: User,
    controller: SessionController,
    data: Mapping[str, Any],
    *,
    rng: random.Random | None = None,
) -> ExamSession:
    store = controller.store
    if isinstance(store, DatabaseSessionStore):
        # A fresh start may recreate a row another request just consumed.
        store.holds_session = False

    config = current_app.config
    mode = (data.get("mode") or "exam").strip().lower()

    if mode == "instant":
        request = parse_instant_request(
            data,
            default_count=config["INSTANT_DEFAULT_QUESTION_COUNT"],
            default_duration=config["INSTANT_DEFAULT_DURATION_MINUTES"],
        )
        exam = get_exam(request.exam_id)
        if not exam_access(user, exam.id).has_access:
            raise AccessDeniedError("Enroll in this exam to create an instant test.")
        questions = draw_questions(exam, request, rng=rng)
        session = controller.start_session(
            INSTANT_PAPER_ID, questions, "instant", request.duration_minutes, exam_id=exam.id
        )
    elif mode == "review":
        try:
            attempt_id = int(data.get("attemptId"))
        except (TypeError, ValueError) as exc:
            raise SessionValidationError("attemptId is required for review sessions.") from exc
        attempt = get_attempt(user, attempt_id)
        session = controller.start_review(
            attempt.paper_id or INSTANT_PAPER_ID,
            attempt_questions(attempt),
            response_map(attempt.responses),
        )
    elif mode in {"exam", "browse"}:
        try:
            paper_id = int(data.get("paperId"))
        except (TypeError, ValueError) as exc:
            raise SessionValidationError("paperId is required.") from exc
        paper = get_paper(paper_id)
        ensure_paper_access(user, paper)
        questions = load_paper_questions(paper)
        duration = paper.duration or config["DEFAULT_PAPER_DURATION_MINUTES"]
        session = controller.start_session(
            paper.id, questions, mode, duration, exam_id=paper.exam_id
        )
    else:
        raise SessionValidationError(f"Unsupported session mode: {mode}")

    logger.info("User %s started a %s session", user.id, session.mode)
    return session


def _consume_and_record(
    user: User, store: DatabaseSessionStore, payload: SubmissionPayload
) -> int:
    # Removing the snapshot and inserting the attempt commit together, so only
    # one request can turn a given session into an attempt.
    if not store.consume():
        db.session.rollback()
        raise SubmissionInProgressError("This attempt has already been submitted.")
    try:
        return record_attempt(user, payload)
    except SubmissionError:
        db.session.rollback()
        raise


def submit_session(user: User, controller: SessionController) -> SubmissionResult:
    store = controller.store
    if not isinstance(store, DatabaseSessionStore):
        raise ExamSessionServiceError("Session is not backed by the database store.")
    submitter = AttemptSubmitter(partial(_consume_and_record, user, store))
    result = submitter.submit(controller)
    if result is None:
        raise SubmissionInProgressError("Your attempt is already being submitted.")
    return result


def submit_if_expired(user: User, controller: SessionController) -> SubmissionResult | None:
    """Submit a timed session whose countdown has reached zero."""

    if not controller.is_expired():
        return None
    logger.info("Auto-submitting expired session for user %s", user.id)
    return submit_session(user, controller)


__all__ = [
    "DatabaseSessionStore",
    "ExamSessionServiceError",
    "SubmissionInProgressError",
    "open_session",
    "start_session",
    "submit_if_expired",
    "submit_session",
]
