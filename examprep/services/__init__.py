"""Service layer for the exam practice API."""

from .access import (
    AccessDeniedError,
    AccessError,
    AccessValidationError,
    ExamAccess,
    create_purchase,
    enroll_free,
    ensure_paper_access,
    exam_access,
    list_purchases,
)
from .analysis import PerformanceAnalysis, SubjectAccuracy, analyse_performance
from .attempts import (
    AttemptError,
    AttemptNotFoundError,
    AttemptPermissionError,
    AttemptValidationError,
    build_review,
    create_attempt,
    get_attempt,
    list_attempts,
    update_attempt,
)
from .catalog import (
    CatalogError,
    CatalogNotFoundError,
    QuestionImportError,
    browse_paper,
    get_exam,
    get_paper,
    import_questions,
    list_exams,
    list_papers,
)
from .doubts import DoubtValidationError, respond
from .exam_sessions import (
    DatabaseSessionStore,
    SubmissionInProgressError,
    open_session,
    start_session,
    submit_if_expired,
    submit_session,
)
from .instant_tests import InstantTestValidationError, draw_questions

__all__ = [
    "AccessDeniedError",
    "AccessError",
    "AccessValidationError",
    "ExamAccess",
    "create_purchase",
    "enroll_free",
    "ensure_paper_access",
    "exam_access",
    "list_purchases",
    "PerformanceAnalysis",
    "SubjectAccuracy",
    "analyse_performance",
    "AttemptError",
    "AttemptNotFoundError",
    "AttemptPermissionError",
    "AttemptValidationError",
    "build_review",
    "create_attempt",
    "get_attempt",
    "list_attempts",
    "update_attempt",
    "CatalogError",
    "CatalogNotFoundError",
    "QuestionImportError",
    "browse_paper",
    "get_exam",
    "get_paper",
    "import_questions",
    "list_exams",
    "list_papers",
    "DoubtValidationError",
    "respond",
    "DatabaseSessionStore",
    "SubmissionInProgressError",
    "open_session",
    "start_session",
    "submit_if_expired",
    "submit_session",
    "InstantTestValidationError",
    "draw_questions",
]
