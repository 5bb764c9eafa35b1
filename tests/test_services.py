from __future__ import annotations

import random
from datetime import datetime

import pytest

from examprep import create_app, db
from examprep.config import TestConfig
from examprep.engine.scoring import SubmissionError
from examprep.engine.state import SessionValidationError
from examprep.models import Attempt, Exam, Paper, Question, SessionSnapshot, User
from examprep.services.analysis import PerformanceAnalysis
from examprep.services.catalog import QuestionImportError, import_questions
from examprep.services.doubts import DoubtValidationError, respond
from examprep.services import exam_sessions
from examprep.services.exam_sessions import (
    SubmissionInProgressError,
    open_session,
    start_session,
    submit_session,
)
from examprep.services.instant_tests import (
    InstantTestRequest,
    InstantTestValidationError,
    draw_questions,
    parse_instant_request,
)


class _FakeClock:
    def __init__(self, now: float = 5000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def app_ctx():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()

        exam = Exam(name="NEET", category="Medical", is_popular=True)
        db.session.add(exam)
        db.session.flush()
        paper = Paper(exam_id=exam.id, year=2023, title="NEET 2023", duration=2, is_free=True)
        db.session.add(paper)
        db.session.flush()

        subjects = ("Physics", "Biology", "Physics", "Chemistry", "Biology")
        db.session.add_all(
            [
                Question(
                    paper_id=paper.id,
                    question_number=number,
                    question_text=f"Question {number}",
                    options=["a", "b", "c", "d"],
                    correct_answer="A",
                    subject=subject,
                )
                for number, subject in enumerate(subjects, start=1)
            ]
        )
        user = User(email="learner@example.com")
        user.set_password("password123")
        db.session.add(user)
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


def _exam() -> Exam:
    return Exam.query.filter_by(name="NEET").one()


def _paper() -> Paper:
    return Paper.query.filter_by(year=2023).one()


def _user() -> User:
    return User.query.filter_by(email="learner@example.com").one()


def test_draw_questions_filters_subjects_and_renumbers(app_ctx):
    request = InstantTestRequest(
        exam_id=_exam().id, subjects=("biology", "PHYSICS"), question_count=3, duration_minutes=5
    )

    drawn = draw_questions(_exam(), request, rng=random.Random(7))

    assert [question.question_number for question in drawn] == [1, 2, 3]
    assert {question.subject for question in drawn} <= {"Biology", "Physics"}
    assert len({question.id for question in drawn}) == 3
    assert all(question.correct_answer_text == "a" for question in drawn)


def test_draw_questions_returns_whole_bank_when_short(app_ctx):
    request = InstantTestRequest(
        exam_id=_exam().id, subjects=("Chemistry",), question_count=50, duration_minutes=5
    )

    drawn = draw_questions(_exam(), request, rng=random.Random(1))

    assert [question.text for question in drawn] == ["Question 4"]


def test_draw_questions_without_matches_is_rejected(app_ctx):
    request = InstantTestRequest(
        exam_id=_exam().id, subjects=("Economics",), question_count=5, duration_minutes=5
    )

    with pytest.raises(InstantTestValidationError):
        draw_questions(_exam(), request)


def test_parse_instant_request_defaults_and_bounds():
    request = parse_instant_request(
        {"examId": "3", "subjects": "Physics"}, default_count=50, default_duration=60
    )
    assert request == InstantTestRequest(
        exam_id=3, subjects=("Physics",), question_count=50, duration_minutes=60
    )

    with pytest.raises(InstantTestValidationError):
        parse_instant_request({}, default_count=50, default_duration=60)
    with pytest.raises(InstantTestValidationError):
        parse_instant_request(
            {"examId": 3, "durationMinutes": 601}, default_count=50, default_duration=60
        )


def test_strict_import_rejects_unscoreable_batch(app_ctx):
    paper = _paper()
    records = [
        {"questionNumber": 6, "questionText": "Fine", "options": ["x", "y"], "correctAnswer": "B"},
        {
            "questionNumber": 7,
            "questionText": "Broken",
            "options": "[oops",
            "correctAnswer": "A",
        },
    ]

    with pytest.raises(QuestionImportError) as excinfo:
        import_questions(paper, records, strict=True)

    assert "7" in str(excinfo.value)
    assert Question.query.filter_by(paper_id=paper.id).count() == 5


def test_lenient_import_keeps_unscoreable_rows(app_ctx, caplog):
    paper = _paper()
    records = [
        {"questionText": "Labelled", "options": {"A": "one", "B": "two"}, "correctAnswer": "B"},
        {"questionText": "Dangling", "options": ["x", "y"], "correctAnswer": "E"},
    ]

    rows = import_questions(paper, records)

    assert [row.question_number for row in rows] == [6, 7]
    assert _paper().total_questions == 7
    assert "unscoreable" in caplog.text


def test_session_store_catches_up_elapsed_time(app_ctx):
    user = _user()
    clock = _FakeClock()

    with open_session(user, clock=clock) as controller:
        start_session(user, controller, {"mode": "exam", "paperId": _paper().id})
    snapshot = SessionSnapshot.query.filter_by(user_id=user.id).one()
    assert snapshot.tick_anchor == pytest.approx(5000.0)

    clock.now += 42.5
    with open_session(user, clock=clock) as controller:
        assert controller.session.time_remaining == 78
        controller.pause_session()
    assert SessionSnapshot.query.filter_by(user_id=user.id).one().tick_anchor is None

    clock.now += 600
    with open_session(user, clock=clock) as controller:
        assert controller.session.time_remaining == 78
        assert controller.session.is_paused


def _start_exam(user, clock) -> None:
    with open_session(user, clock=clock) as controller:
        start_session(user, controller, {"mode": "exam", "paperId": _paper().id})


def test_overlapping_controllers_submit_once(app_ctx):
    user = _user()
    clock = _FakeClock()
    _start_exam(user, clock)

    with open_session(user, clock=clock) as first, open_session(user, clock=clock) as second:
        result = submit_session(user, first)
        with pytest.raises(SubmissionInProgressError):
            submit_session(user, second)

    assert Attempt.query.count() == 1
    assert db.session.get(Attempt, result.attempt_id).user_id == user.id
    assert SessionSnapshot.query.count() == 0


def test_stale_controller_does_not_recreate_submitted_session(app_ctx, caplog):
    user = _user()
    clock = _FakeClock()
    _start_exam(user, clock)

    with open_session(user, clock=clock) as first, open_session(user, clock=clock) as stale:
        submit_session(user, first)
        stale.select_answer(stale.session.questions[0].id, "a")

    assert SessionSnapshot.query.count() == 0
    assert "closed by another request" in caplog.text

    # Starting afresh is still allowed.
    _start_exam(user, clock)
    assert SessionSnapshot.query.count() == 1


def test_failed_recording_restores_the_stored_session(app_ctx, monkeypatch):
    user = _user()
    clock = _FakeClock()
    _start_exam(user, clock)

    def failing_record(user, payload):
        raise SubmissionError("database unavailable")

    with monkeypatch.context() as patch:
        patch.setattr(exam_sessions, "record_attempt", failing_record)
        with open_session(user, clock=clock) as controller:
            with pytest.raises(SubmissionError):
                submit_session(user, controller)
            assert controller.session is not None

    assert SessionSnapshot.query.count() == 1
    with open_session(user, clock=clock) as controller:
        submit_session(user, controller)
    assert Attempt.query.count() == 1
    assert SessionSnapshot.query.count() == 0


def test_import_rejects_non_numeric_question_number(app_ctx):
    records = [
        {"questionNumber": "abc", "questionText": "X", "options": ["a"], "correctAnswer": "a"}
    ]

    with pytest.raises(QuestionImportError) as excinfo:
        import_questions(_paper(), records)

    assert "Record 1" in str(excinfo.value)
    assert Question.query.filter_by(paper_id=_paper().id).count() == 5


def test_review_start_requires_attempt_id(app_ctx):
    user = _user()

    with open_session(user, clock=_FakeClock()) as controller:
        with pytest.raises(SessionValidationError) as excinfo:
            start_session(user, controller, {"mode": "review"})

    assert "attemptId" in str(excinfo.value)


def test_doubt_rules_pick_first_match():
    now = datetime(2024, 1, 1, 9, 30)

    reply = respond("Organic chemistry and calculus", now=now)

    assert reply.topic == "chemistry"
    assert reply.created_at == now
    with pytest.raises(DoubtValidationError):
        respond(None)


@pytest.mark.parametrize(
    "score, rating",
    [(90, "Excellent"), (75, "Excellent"), (60, "Good"), (59, "Needs Improvement")],
)
def test_performance_rating(score, rating):
    analysis = PerformanceAnalysis(
        total_attempts=1,
        completed_attempts=1,
        average_score=score,
        average_time_per_question=30,
    )

    assert analysis.rating == rating
