from __future__ import annotations

from typing import Any

from flask import current_app, g, jsonify, request
from flask_login import current_user, login_required

from .. import db
from ..engine.questions import Question as SessionQuestion, selectable_options
from ..engine.scoring import EmptySessionError, SubmissionError, SubmissionResult
from ..engine.session import NoActiveSessionError, SessionController
from ..engine.state import SessionValidationError, palette_status, review_status
from ..engine.timer import format_clock, timer_level
from ..models import Attempt, AuthToken, Exam, Paper, Purchase, User
from ..services.access import (
    AccessDeniedError,
    AccessValidationError,
    create_purchase,
    enroll_free,
    exam_access,
    list_purchases,
)
from ..services.analysis import analyse_performance
from ..services.attempts import (
    AttemptNotFoundError,
    AttemptPermissionError,
    AttemptReview,
    AttemptValidationError,
    build_review,
    create_attempt,
    get_attempt,
    list_attempts,
    update_attempt,
)
from ..services.catalog import (
    CatalogNotFoundError,
    QuestionImportError,
    browse_paper,
    get_exam,
    get_paper,
    list_exams,
    list_papers,
    question_records,
)
from ..services.doubts import DoubtValidationError, respond
from ..services.exam_sessions import (
    SubmissionInProgressError,
    open_session,
    start_session,
    submit_if_expired,
    submit_session,
)
from ..services.instant_tests import InstantTestValidationError
from . import api_bp

MIN_PASSWORD_LENGTH = 6

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (CatalogNotFoundError, 404),
    (AttemptNotFoundError, 404),
    (NoActiveSessionError, 404),
    (AccessDeniedError, 403),
    (AttemptPermissionError, 403),
    (SubmissionInProgressError, 409),
    (SessionValidationError, 400),
    (EmptySessionError, 400),
    (AccessValidationError, 400),
    (AttemptValidationError, 400),
    (InstantTestValidationError, 400),
    (QuestionImportError, 400),
    (DoubtValidationError, 400),
)

_HANDLED_ERRORS = tuple(error for error, _ in _ERROR_STATUS)


def _json_error(message: str, status: int = 400):
    return jsonify({"error": message}), status


def _service_error(exc: Exception):
    for error, status in _ERROR_STATUS:
        if isinstance(exc, error):
            return _json_error(str(exc), status)
    raise exc


def _submission_failed(exc: SubmissionError):
    return jsonify({"error": str(exc), "retryable": True}), 502


def _current_user() -> User:
    return current_user._get_current_object()


def _isoformat(value) -> str | None:
    return value.isoformat() if value else None


def _serialise_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "profileImageUrl": user.profile_image_url,
        "createdAt": _isoformat(user.created_at),
    }


def _serialise_exam(exam: Exam) -> dict[str, Any]:
    return {
        "id": exam.id,
        "name": exam.name,
        "description": exam.description,
        "icon": exam.icon,
        "category": exam.category,
        "isPopular": exam.is_popular,
        "totalQuestions": exam.total_questions,
        "yearsAvailable": exam.years_available,
    }


def _serialise_paper(paper: Paper) -> dict[str, Any]:
    return {
        "id": paper.id,
        "examId": paper.exam_id,
        "year": paper.year,
        "title": paper.title,
        "totalQuestions": paper.total_questions,
        "durationMinutes": paper.duration,
        "isFree": paper.is_free,
    }


def _serialise_purchase(purchase: Purchase) -> dict[str, Any]:
    return {
        "id": purchase.id,
        "examId": purchase.exam_id,
        "type": purchase.type,
        "amount": str(purchase.amount),
        "paymentReference": purchase.payment_reference,
        "status": purchase.status,
        "createdAt": _isoformat(purchase.created_at),
    }


def _serialise_attempt(attempt: Attempt) -> dict[str, Any]:
    return {
        "id": attempt.id,
        "paperId": attempt.paper_id,
        "examId": attempt.exam_id,
        "mode": attempt.mode,
        "responses": attempt.responses or {},
        "questionIds": attempt.question_ids,
        "score": attempt.score,
        "totalQuestions": attempt.total_questions,
        "timeSpent": attempt.time_spent,
        "status": attempt.status,
        "startedAt": _isoformat(attempt.started_at),
        "completedAt": _isoformat(attempt.completed_at),
    }


def _serialise_question(
    question: SessionQuestion, *, reveal: bool, browse_filter: bool = False
) -> dict[str, Any]:
    payload = {
        "id": question.id,
        "questionNumber": question.question_number,
        "questionText": question.text,
        "options": selectable_options(question) if browse_filter else list(question.options),
        "subject": question.subject,
        "topic": question.topic,
        "difficulty": question.difficulty,
    }
    if reveal:
        payload["correctAnswer"] = question.correct_answer_text
        payload["explanation"] = question.explanation
    return payload


def _serialise_session(controller: SessionController) -> dict[str, Any]:
    session = controller.session
    reveal = session.mode in {"browse", "review"}
    summary = controller.session_summary()

    current = controller.current_question()
    current_payload = None
    if current is not None:
        state = controller.get_state(current.id)
        current_payload = _serialise_question(
            current, reveal=reveal, browse_filter=session.mode == "browse"
        )
        current_payload["selectedAnswer"] = state.selected_answer
        current_payload["isMarkedForReview"] = state.is_marked_for_review

    palette = []
    for index, question in enumerate(session.questions):
        state = controller.get_state(question.id)
        if session.mode == "review":
            status = review_status(question, state.selected_answer)
        else:
            status = palette_status(state)
        palette.append(
            {
                "index": index,
                "questionId": question.id,
                "questionNumber": question.question_number,
                "status": status,
            }
        )

    return {
        "paperId": session.paper_id or None,
        "examId": session.exam_id,
        "mode": session.mode,
        "currentIndex": session.current_index,
        "totalQuestions": len(session.questions),
        "timeRemaining": session.time_remaining,
        "durationSeconds": session.duration_seconds,
        "clock": format_clock(session.time_remaining),
        "timerLevel": timer_level(session.time_remaining, session.duration_seconds),
        "isTimerRunning": session.is_timer_running,
        "isPaused": session.is_paused,
        "readOnly": session.read_only,
        "currentQuestion": current_payload,
        "palette": palette,
        "summary": {
            "answered": summary.answered,
            "marked": summary.marked,
            "unanswered": summary.unanswered,
            "total": summary.total,
        },
    }


def _serialise_submission(result: SubmissionResult) -> dict[str, Any]:
    return {
        "attemptId": result.attempt_id,
        "score": result.score,
        "totalQuestions": result.total_questions,
        "timeSpent": result.time_spent,
        "redirectUrl": f"/review/{result.attempt_id}",
    }


def _serialise_review(review: AttemptReview) -> dict[str, Any]:
    report = review.report
    return {
        "attempt": _serialise_attempt(review.attempt),
        "questions": [
            {
                **_serialise_question(item.question, reveal=True),
                "selectedAnswer": item.answer,
                "status": item.status,
            }
            for item in report.items
        ],
        "stats": {
            "correct": report.correct,
            "incorrect": report.incorrect,
            "unanswered": report.unanswered,
            "total": report.total,
            "score": review.attempt.score,
        },
    }


def _question_id(data: dict[str, Any]) -> int | None:
    try:
        return int(data.get("questionId"))
    except (TypeError, ValueError):
        return None


@api_bp.post("/auth/register")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = (data.get("password") or "").strip()

    if not email or "@" not in email:
        return _json_error("A valid email is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        return _json_error("Password must be at least 6 characters long.")
    if User.query.filter_by(email=email).first():
        return _json_error("User already exists.", 409)

    user = User(
        email=email,
        first_name=(data.get("firstName") or "").strip() or None,
        last_name=(data.get("lastName") or "").strip() or None,
    )
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    token = user.issue_token(ttl_days=current_app.config["AUTH_TOKEN_TTL_DAYS"])
    db.session.commit()

    current_app.logger.info("register success", extra={"email": email})

    return (
        jsonify(
            {
                "userId": user.id,
                "token": token.token,
                "expiresAt": token.expires_at.isoformat(),
                "user": _serialise_user(user),
                "redirectUrl": "/dashboard",
            }
        ),
        201,
    )


@api_bp.post("/auth/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = (data.get("password") or "").strip()

    if not email or not password:
        return _json_error("Email and password are required.")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        current_app.logger.info("login failed", extra={"email": email})
        return _json_error("Invalid credentials.", 401)

    token = user.issue_token(ttl_days=current_app.config["AUTH_TOKEN_TTL_DAYS"])
    db.session.commit()

    current_app.logger.info("login success", extra={"email": email})

    return jsonify(
        {
            "userId": user.id,
            "token": token.token,
            "expiresAt": token.expires_at.isoformat(),
            "user": _serialise_user(user),
            "redirectUrl": "/dashboard",
        }
    )


@api_bp.post("/auth/logout")
@login_required
def logout():
    token: AuthToken = g.current_token
    token.revoked = True
    db.session.commit()
    return jsonify({"message": "Logged out"})


@api_bp.get("/auth/user")
@login_required
def auth_user():
    return jsonify(_serialise_user(_current_user()))


@api_bp.get("/exams")
def exams_index():
    return jsonify({"exams": [_serialise_exam(exam) for exam in list_exams()]})


@api_bp.get("/exams/<int:exam_id>")
def exam_detail(exam_id: int):
    try:
        exam = get_exam(exam_id)
    except CatalogNotFoundError as exc:
        return _service_error(exc)
    return jsonify(_serialise_exam(exam))


@api_bp.get("/exams/<int:exam_id>/papers")
def exam_papers(exam_id: int):
    try:
        papers = list_papers(exam_id)
    except CatalogNotFoundError as exc:
        return _service_error(exc)
    return jsonify({"papers": [_serialise_paper(paper) for paper in papers]})


@api_bp.get("/papers/<int:paper_id>")
def paper_detail(paper_id: int):
    try:
        paper = get_paper(paper_id)
    except CatalogNotFoundError as exc:
        return _service_error(exc)
    return jsonify(_serialise_paper(paper))


@api_bp.get("/papers/<int:paper_id>/questions")
def paper_questions(paper_id: int):
    try:
        paper = get_paper(paper_id)
    except CatalogNotFoundError as exc:
        return _service_error(exc)
    return jsonify({"questions": question_records(paper)})


@api_bp.get("/papers/<int:paper_id>/browse")
def paper_browse(paper_id: int):
    page = request.args.get("page", default=1, type=int) or 1
    try:
        paper = get_paper(paper_id)
        result = browse_paper(
            paper,
            search=request.args.get("search"),
            subject=request.args.get("subject"),
            difficulty=request.args.get("difficulty"),
            page=page,
            page_size=current_app.config["BROWSE_PAGE_SIZE"],
        )
    except CatalogNotFoundError as exc:
        return _service_error(exc)
    return jsonify(
        {
            "paper": _serialise_paper(paper),
            "questions": result.items,
            "page": result.page,
            "totalPages": result.total_pages,
            "totalQuestions": result.total_items,
            "subjects": result.subjects,
            "difficulties": result.difficulties,
        }
    )


@api_bp.get("/user/purchases")
@login_required
def user_purchases():
    purchases = list_purchases(_current_user())
    return jsonify({"purchases": [_serialise_purchase(purchase) for purchase in purchases]})


@api_bp.post("/purchases")
@login_required
def purchase_create():
    data = request.get_json(silent=True) or {}
    try:
        exam = get_exam(int(data.get("examId")))
    except (TypeError, ValueError):
        return _json_error("examId is required.")
    except CatalogNotFoundError as exc:
        return _service_error(exc)

    try:
        purchase = create_purchase(_current_user(), exam, data)
    except AccessValidationError as exc:
        return _service_error(exc)
    return jsonify(_serialise_purchase(purchase)), 201


@api_bp.post("/exams/<int:exam_id>/enroll-free")
@login_required
def exam_enroll_free(exam_id: int):
    try:
        exam = get_exam(exam_id)
    except CatalogNotFoundError as exc:
        return _service_error(exc)

    purchase, access = enroll_free(_current_user(), exam)
    if purchase is None:
        return jsonify(
            {"message": "Already enrolled", "access": {"hasAccess": True, "type": access.type}}
        )
    return jsonify(_serialise_purchase(purchase)), 201


@api_bp.get("/exams/<int:exam_id>/access")
@login_required
def exam_access_status(exam_id: int):
    access = exam_access(_current_user(), exam_id)
    return jsonify({"hasAccess": access.has_access, "type": access.type})


@api_bp.get("/user/attempts")
@login_required
def user_attempts():
    attempts = list_attempts(_current_user())
    return jsonify({"attempts": [_serialise_attempt(attempt) for attempt in attempts]})


@api_bp.post("/attempts")
@login_required
def attempt_create():
    data = request.get_json(silent=True) or {}
    try:
        attempt = create_attempt(_current_user(), data)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)
    return jsonify(_serialise_attempt(attempt)), 201


@api_bp.get("/attempts/<int:attempt_id>")
@login_required
def attempt_detail(attempt_id: int):
    try:
        attempt = get_attempt(_current_user(), attempt_id)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)
    return jsonify(_serialise_attempt(attempt))


@api_bp.patch("/attempts/<int:attempt_id>")
@login_required
def attempt_update(attempt_id: int):
    data = request.get_json(silent=True) or {}
    try:
        attempt = update_attempt(_current_user(), attempt_id, data)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)
    return jsonify(_serialise_attempt(attempt))


@api_bp.get("/attempts/<int:attempt_id>/review")
@login_required
def attempt_review(attempt_id: int):
    try:
        review = build_review(_current_user(), attempt_id)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)
    return jsonify(_serialise_review(review))


def _expired_response(user: User, controller: SessionController):
    """Submit an expired timed session and describe the outcome."""

    result = submit_if_expired(user, controller)
    if result is None:
        return None
    payload = {"error": "Time is up.", "autoSubmitted": True, **_serialise_submission(result)}
    return jsonify(payload), 409


@api_bp.post("/session/start")
@login_required
def session_start():
    data = request.get_json(silent=True) or {}
    user = _current_user()
    try:
        with open_session(user) as controller:
            session = start_session(user, controller, data)
            payload = _serialise_session(controller)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)

    current_app.logger.info(
        "session started", extra={"userId": user.id, "mode": session.mode}
    )
    return jsonify(payload), 201


@api_bp.get("/session")
@login_required
def session_state():
    user = _current_user()
    try:
        with open_session(user) as controller:
            result = submit_if_expired(user, controller)
            if result is not None:
                return jsonify(
                    {"active": False, "autoSubmitted": True, **_serialise_submission(result)}
                )
            if controller.session is None:
                return _json_error("No exam session is active.", 404)
            return jsonify(_serialise_session(controller))
    except SubmissionError as exc:
        return _submission_failed(exc)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)


@api_bp.post("/session/navigate")
@login_required
def session_navigate():
    data = request.get_json(silent=True) or {}
    direction = (data.get("direction") or "").strip().lower()
    index = data.get("index")
    if index is None and direction not in {"next", "previous"}:
        return _json_error("Provide an index or a direction of 'next' or 'previous'.")
    if index is not None and (isinstance(index, bool) or not isinstance(index, int)):
        return _json_error("index must be an integer.")

    with open_session(_current_user()) as controller:
        if controller.session is None:
            return _json_error("No exam session is active.", 404)
        if index is not None:
            controller.go_to_question(index)
        elif direction == "next":
            controller.next_question()
        else:
            controller.previous_question()
        return jsonify(_serialise_session(controller))


@api_bp.post("/session/answer")
@login_required
def session_answer():
    data = request.get_json(silent=True) or {}
    question_id = _question_id(data)
    answer = data.get("answer")
    if question_id is None or not isinstance(answer, str):
        return _json_error("questionId and answer are required.")

    user = _current_user()
    try:
        with open_session(user) as controller:
            expired = _expired_response(user, controller)
            if expired is not None:
                return expired
            controller.select_answer(question_id, answer)
            return jsonify(_serialise_session(controller))
    except SubmissionError as exc:
        return _submission_failed(exc)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)


@api_bp.post("/session/clear")
@login_required
def session_clear_answer():
    data = request.get_json(silent=True) or {}
    question_id = _question_id(data)
    if question_id is None:
        return _json_error("questionId is required.")

    user = _current_user()
    try:
        with open_session(user) as controller:
            expired = _expired_response(user, controller)
            if expired is not None:
                return expired
            controller.clear_answer(question_id)
            return jsonify(_serialise_session(controller))
    except SubmissionError as exc:
        return _submission_failed(exc)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)


@api_bp.post("/session/mark")
@login_required
def session_mark():
    data = request.get_json(silent=True) or {}
    question_id = _question_id(data)
    if question_id is None:
        return _json_error("questionId is required.")

    user = _current_user()
    try:
        with open_session(user) as controller:
            expired = _expired_response(user, controller)
            if expired is not None:
                return expired
            controller.toggle_mark_for_review(question_id)
            return jsonify(_serialise_session(controller))
    except SubmissionError as exc:
        return _submission_failed(exc)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)


@api_bp.post("/session/pause")
@login_required
def session_pause():
    with open_session(_current_user()) as controller:
        if controller.session is None:
            return _json_error("No exam session is active.", 404)
        controller.pause_session()
        return jsonify(_serialise_session(controller))


@api_bp.post("/session/resume")
@login_required
def session_resume():
    with open_session(_current_user()) as controller:
        if controller.session is None:
            return _json_error("No exam session is active.", 404)
        controller.resume_session()
        return jsonify(_serialise_session(controller))


@api_bp.post("/session/submit")
@login_required
def session_submit():
    user = _current_user()
    try:
        with open_session(user) as controller:
            result = submit_session(user, controller)
    except SubmissionError as exc:
        return _submission_failed(exc)
    except _HANDLED_ERRORS as exc:
        return _service_error(exc)

    current_app.logger.info(
        "session submitted",
        extra={"userId": user.id, "attemptId": result.attempt_id, "score": result.score},
    )
    return jsonify(_serialise_submission(result))


@api_bp.delete("/session")
@login_required
def session_end():
    with open_session(_current_user()) as controller:
        controller.end_session()
    return jsonify({"message": "Session ended"})


@api_bp.get("/user/analysis")
@login_required
def user_analysis():
    analysis = analyse_performance(_current_user())
    return jsonify(
        {
            "totalAttempts": analysis.total_attempts,
            "completedAttempts": analysis.completed_attempts,
            "averageScore": analysis.average_score,
            "averageTimePerQuestion": analysis.average_time_per_question,
            "rating": analysis.rating,
            "subjects": [
                {
                    "subject": item.subject,
                    "attempted": item.attempted,
                    "correct": item.correct,
                    "accuracy": item.accuracy,
                }
                for item in analysis.subjects
            ],
            "scoreDistribution": analysis.score_distribution,
        }
    )


@api_bp.post("/doubts")
@login_required
def doubts():
    data = request.get_json(silent=True) or {}
    try:
        reply = respond(data.get("message"))
    except DoubtValidationError as exc:
        return _service_error(exc)
    return jsonify(
        {
            "topic": reply.topic,
            "message": reply.message,
            "createdAt": reply.created_at.isoformat(),
        }
    )
