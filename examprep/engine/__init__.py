"""Framework-free exam session engine."""

from .persistence import JsonFileStore, MemoryStore, deserialize_session, serialize_session
from .questions import Question, normalize_question, normalize_questions, selectable_options
from .scoring import (
    AttemptSubmitter,
    EmptySessionError,
    SubmissionError,
    SubmissionNotAllowedError,
    SubmissionPayload,
    SubmissionResult,
    compute_score,
    grade_responses,
)
from .session import ExamSession, NoActiveSessionError, ReadOnlySessionError, SessionController
from .state import (
    QuestionState,
    QuestionStateTracker,
    SessionError,
    SessionSummary,
    SessionValidationError,
    UnknownQuestionError,
    palette_status,
)
from .timer import ClockTicker, ManualTicker, format_clock, ticking, timer_level

__all__ = [
    "AttemptSubmitter",
    "ClockTicker",
    "EmptySessionError",
    "ExamSession",
    "JsonFileStore",
    "ManualTicker",
    "MemoryStore",
    "NoActiveSessionError",
    "Question",
    "QuestionState",
    "QuestionStateTracker",
    "ReadOnlySessionError",
    "SessionController",
    "SessionError",
    "SessionSummary",
    "SessionValidationError",
    "SubmissionError",
    "SubmissionNotAllowedError",
    "SubmissionPayload",
    "SubmissionResult",
    "UnknownQuestionError",
    "compute_score",
    "deserialize_session",
    "format_clock",
    "grade_responses",
    "normalize_question",
    "normalize_questions",
    "palette_status",
    "selectable_options",
    "serialize_session",
    "ticking",
    "timer_level",
]
