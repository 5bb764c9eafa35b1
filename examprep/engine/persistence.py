"""Serialisation of sessions and simple session stores."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping

from .questions import Question
from .session import ExamSession
from .state import QuestionState, QuestionStateTracker

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = 1


class SessionPayloadError(ValueError):
    """Raised when a stored session payload cannot be rebuilt."""


def _question_to_dict(question: Question) -> dict[str, Any]:
    return {
        "id": question.id,
        "questionNumber": question.question_number,
        "text": question.text,
        "options": list(question.options),
        "correctAnswer": question.correct_answer,
        "correctAnswerText": question.correct_answer_text,
        "explanation": question.explanation,
        "subject": question.subject,
        "topic": question.topic,
        "difficulty": question.difficulty,
    }


def _question_from_dict(data: Mapping[str, Any]) -> Question:
    # Stored questions are already normalised; rebuild them as they were.
    return Question(
        id=data["id"],
        question_number=data.get("questionNumber", 0),
        text=data.get("text", ""),
        options=tuple(data.get("options") or ()),
        correct_answer=data.get("correctAnswer", ""),
        correct_answer_text=data.get("correctAnswerText"),
        explanation=data.get("explanation"),
        subject=data.get("subject"),
        topic=data.get("topic"),
        difficulty=data.get("difficulty"),
    )


def serialize_session(session: ExamSession) -> dict[str, Any]:
    return {
        "version": PAYLOAD_VERSION,
        "paperId": session.paper_id,
        "examId": session.exam_id,
        "mode": session.mode,
        "questions": [_question_to_dict(question) for question in session.questions],
        "currentIndex": session.current_index,
        "questionStates": [
            {
                "questionId": state.question_id,
                "selectedAnswer": state.selected_answer,
                "isMarkedForReview": state.is_marked_for_review,
                "timeSpent": state.time_spent,
            }
            for state in session.tracker
        ],
        "timeRemaining": session.time_remaining,
        "durationSeconds": session.duration_seconds,
        "isTimerRunning": session.is_timer_running,
        "isPaused": session.is_paused,
        "readOnly": session.read_only,
        "attemptId": session.attempt_id,
    }


def _aligned_states(
    questions: list[Question], stored: dict[int, QuestionState]
) -> QuestionStateTracker:
    """One state per question: missing entries are rebuilt, unknown ids dropped."""

    question_ids = [question.id for question in questions]
    missing = [question_id for question_id in question_ids if question_id not in stored]
    unknown = sorted(set(stored) - set(question_ids))
    if missing or unknown:
        logger.warning(
            "Stored question states out of step with questions (missing %s, unknown %s)",
            missing,
            unknown,
        )
    return QuestionStateTracker(
        stored.get(question_id) or QuestionState(question_id=question_id)
        for question_id in question_ids
    )


def deserialize_session(payload: Mapping[str, Any]) -> ExamSession:
    version = payload.get("version")
    if version != PAYLOAD_VERSION:
        raise SessionPayloadError(f"Unsupported session payload version: {version!r}")
    try:
        questions = [_question_from_dict(item) for item in payload["questions"]]
        stored = {
            item["questionId"]: QuestionState(
                question_id=item["questionId"],
                selected_answer=item.get("selectedAnswer"),
                is_marked_for_review=bool(item.get("isMarkedForReview", False)),
                time_spent=int(item.get("timeSpent", 0)),
            )
            for item in payload["questionStates"]
        }
        tracker = _aligned_states(questions, stored)
        session = ExamSession(
            paper_id=payload["paperId"],
            exam_id=payload.get("examId"),
            mode=payload["mode"],
            questions=questions,
            tracker=tracker,
            current_index=int(payload.get("currentIndex", 0)),
            time_remaining=max(int(payload.get("timeRemaining", 0)), 0),
            duration_seconds=int(payload.get("durationSeconds", 0)),
            is_timer_running=bool(payload.get("isTimerRunning", False)),
            is_paused=bool(payload.get("isPaused", False)),
            read_only=bool(payload.get("readOnly", False)),
            attempt_id=payload.get("attemptId"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionPayloadError(f"Malformed session payload: {exc}") from exc

    if questions and not 0 <= session.current_index < len(questions):
        session.current_index = 0
    return session


def dumps_session(session: ExamSession) -> str:
    return json.dumps(serialize_session(session))


def loads_session(text: str) -> ExamSession | None:
    """Rebuild a session from JSON text, or ``None`` when it is unusable."""

    try:
        return deserialize_session(json.loads(text))
    except (json.JSONDecodeError, SessionPayloadError) as exc:
        logger.warning("Discarding stored exam session: %s", exc)
        return None


class MemoryStore:
    def __init__(self) -> None:
        self.payload: str | None = None
        self.save_count = 0

    def load(self) -> ExamSession | None:
        if self.payload is None:
            return None
        return loads_session(self.payload)

    def save(self, session: ExamSession) -> None:
        self.payload = dumps_session(session)
        self.save_count += 1

    def clear(self) -> None:
        self.payload = None


class JsonFileStore:
    """Keeps the session in one JSON file, replaced atomically on save."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> ExamSession | None:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return loads_session(text)

    def save(self, session: ExamSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(dumps_session(session), encoding="utf-8")
        os.replace(tmp_path, self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


__all__ = [
    "JsonFileStore",
    "MemoryStore",
    "PAYLOAD_VERSION",
    "SessionPayloadError",
    "deserialize_session",
    "dumps_session",
    "loads_session",
    "serialize_session",
]
