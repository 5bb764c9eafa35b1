"""Attempt records: creation, ownership checks and review replay."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..engine.questions import Question as SessionQuestion, normalize_question
from ..engine.scoring import GradeReport, SubmissionError, SubmissionPayload, grade_responses
from ..engine.session import ExamSession, SessionController
from ..models import Attempt, Question, User
from .catalog import get_paper, load_paper_questions

logger = logging.getLogger(__name__)

ATTEMPT_MODES = {"exam", "browse", "instant"}
PATCHABLE_STATUSES = {"in_progress", "completed", "abandoned"}


class AttemptError(RuntimeError):
    """Base class for attempt problems."""


class AttemptNotFoundError(AttemptError):
    """Raised when an attempt does not exist."""


class AttemptPermissionError(AttemptError):
    """Raised when a user touches another user's attempt."""


class AttemptValidationError(AttemptError):
    """Raised when attempt data is malformed."""


@dataclass(slots=True)
class AttemptReview:
    attempt: Attempt
    session: ExamSession
    report: GradeReport


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise AttemptValidationError("completedAt must be an ISO timestamp.") from exc
    return parsed.replace(tzinfo=None)


def _optional_int(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise AttemptValidationError(f"{key} must be an integer.") from exc


def response_map(responses: Mapping[Any, Any] | None) -> dict[int, str]:
    """Stored responses keyed by integer question id."""

    result: dict[int, str] = {}
    for key, value in (responses or {}).items():
        try:
            question_id = int(key)
        except (TypeError, ValueError):
            logger.warning("Ignoring response with non-numeric question id %r", key)
            continue
        if value is not None:
            result[question_id] = str(value)
    return result


def list_attempts(user: User) -> list[Attempt]:
    return (
        Attempt.query.filter_by(user_id=user.id)
        .order_by(Attempt.started_at.desc(), Attempt.id.desc())
        .all()
    )


def get_attempt(user: User, attempt_id: int) -> Attempt:
    attempt = db.session.get(Attempt, attempt_id)
    if not attempt:
        raise AttemptNotFoundError("Attempt not found.")
    if attempt.user_id != user.id:
        raise AttemptPermissionError("Access denied.")
    return attempt


def create_attempt(user: User, data: Mapping[str, Any]) -> Attempt:
    mode = (data.get("mode") or "").strip().lower()
    if mode not in ATTEMPT_MODES:
        raise AttemptValidationError("Mode must be exam, browse or instant.")

    paper_id = _optional_int(data, "paperId")
    if paper_id is None and mode != "instant":
        raise AttemptValidationError("paperId is required.")
    if paper_id is not None:
        get_paper(paper_id)

    responses = data.get("responses") or {}
    if not isinstance(responses, Mapping):
        raise AttemptValidationError("responses must be an object.")

    score = _optional_int(data, "score")
    if score is not None and not 0 <= score <= 100:
        raise AttemptValidationError("score must be between 0 and 100.")

    attempt = Attempt(
        user_id=user.id,
        paper_id=paper_id,
        exam_id=_optional_int(data, "examId"),
        mode=mode,
        responses={str(key): value for key, value in responses.items()},
        question_ids=data.get("questionIds"),
        score=score,
        total_questions=_optional_int(data, "totalQuestions"),
        time_spent=_optional_int(data, "timeSpent"),
        status=data.get("status") or "completed",
        completed_at=_parse_timestamp(data["completedAt"]) if data.get("completedAt") else None,
    )
    db.session.add(attempt)
    db.session.commit()
    return attempt


def update_attempt(user: User, attempt_id: int, data: Mapping[str, Any]) -> Attempt:
    attempt = get_attempt(user, attempt_id)
    if "status" in data:
        status = (data.get("status") or "").strip().lower()
        if status not in PATCHABLE_STATUSES:
            raise AttemptValidationError("Unsupported attempt status.")
        attempt.status = status
    if "completedAt" in data:
        attempt.completed_at = (
            _parse_timestamp(data["completedAt"]) if data["completedAt"] else None
        )
    if "timeSpent" in data:
        attempt.time_spent = _optional_int(data, "timeSpent")
    db.session.commit()
    return attempt


def record_attempt(user: User, payload: SubmissionPayload) -> int:
    """Persist a submitted session, raising :class:`SubmissionError` on failure."""

    now = datetime.utcnow()
    attempt = Attempt(
        user_id=user.id,
        paper_id=payload.paper_id or None,
        exam_id=payload.exam_id,
        mode=payload.mode,
        responses={str(key): value for key, value in payload.responses.items()},
        question_ids=payload.question_ids if payload.mode == "instant" else None,
        score=payload.score,
        total_questions=payload.total_questions,
        time_spent=payload.time_spent,
        status="completed",
        completed_at=now,
    )
    try:
        db.session.add(attempt)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to store attempt for user %s", user.id)
        raise SubmissionError("Could not save your attempt. Please try again.") from exc
    return attempt.id


def attempt_questions(attempt: Attempt) -> list[SessionQuestion]:
    if attempt.paper_id is not None:
        return load_paper_questions(get_paper(attempt.paper_id))

    question_ids = [int(value) for value in attempt.question_ids or []]
    rows = {row.id: row for row in Question.query.filter(Question.id.in_(question_ids))}
    missing = [question_id for question_id in question_ids if question_id not in rows]
    if missing:
        logger.warning("Attempt %s references missing questions: %s", attempt.id, missing)
    return [
        normalize_question(rows[question_id].to_record())
        for question_id in question_ids
        if question_id in rows
    ]


def build_review(user: User, attempt_id: int) -> AttemptReview:
    attempt = get_attempt(user, attempt_id)
    questions = attempt_questions(attempt)
    responses = response_map(attempt.responses)

    controller = SessionController()
    session = controller.start_review(attempt.paper_id or 0, questions, responses)
    return AttemptReview(
        attempt=attempt,
        session=session,
        report=grade_responses(questions, responses),
    )


__all__ = [
    "AttemptError",
    "AttemptNotFoundError",
    "AttemptPermissionError",
    "AttemptReview",
    "AttemptValidationError",
    "attempt_questions",
    "build_review",
    "create_attempt",
    "get_attempt",
    "list_attempts",
    "record_attempt",
    "response_map",
    "update_attempt",
]
