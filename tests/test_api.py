from __future__ import annotations

import pytest

from examprep import create_app, db
from examprep.config import TestConfig
from examprep.engine.scoring import SubmissionError
from examprep.models import Attempt, Exam, Paper, Question, SessionSnapshot
from examprep.services import exam_sessions


class _FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def seeded_app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()

        jee = Exam(name="JEE Main", category="Engineering", is_popular=True, years_available=2)
        gate = Exam(name="GATE", category="Engineering", is_popular=False, years_available=1)
        db.session.add_all([gate, jee])
        db.session.flush()

        free_paper = Paper(
            exam_id=jee.id, year=2023, title="JEE Main 2023", duration=1, is_free=True
        )
        paid_paper = Paper(exam_id=jee.id, year=2024, title="JEE Main 2024", duration=30)
        db.session.add_all([free_paper, paid_paper])
        db.session.flush()

        db.session.add_all(
            [
                Question(
                    paper_id=free_paper.id,
                    question_number=1,
                    question_text="What is 2 + 2?",
                    options=["3", "4", "5", "6"],
                    correct_answer="4",
                    explanation="Basic addition.",
                    subject="Physics",
                    topic="Units",
                    difficulty="Easy",
                ),
                Question(
                    paper_id=free_paper.id,
                    question_number=2,
                    question_text="Which compound is water?",
                    options='["H2O", "CO2", "NaCl", "O2"]',
                    correct_answer="A",
                    subject="Chemistry",
                    topic="Compounds",
                    difficulty="Medium",
                ),
                Question(
                    paper_id=free_paper.id,
                    question_number=3,
                    question_text="What is 2 cubed?",
                    options={"D": "32", "B": "8", "A": "2", "C": "16"},
                    correct_answer="B",
                    subject="Mathematics",
                    topic="Powers",
                    difficulty="Hard",
                ),
                Question(
                    paper_id=paid_paper.id,
                    question_number=1,
                    question_text="Speed of light?",
                    options=["3e8 m/s", "3e5 m/s"],
                    correct_answer="A",
                    subject="Physics",
                    topic="Optics",
                    difficulty="Easy",
                ),
            ]
        )
        free_paper.total_questions = 3
        paid_paper.total_questions = 1
        db.session.commit()
        db.session.remove()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(seeded_app):
    return seeded_app.test_client()


@pytest.fixture
def clock(monkeypatch):
    fake = _FakeClock()
    monkeypatch.setattr(exam_sessions, "wall_clock", fake)
    return fake


@pytest.fixture
def ids(seeded_app):
    with seeded_app.app_context():
        jee = Exam.query.filter_by(name="JEE Main").one()
        free_paper = Paper.query.filter_by(year=2023).one()
        paid_paper = Paper.query.filter_by(year=2024).one()
        question_ids = [
            row.id
            for row in Question.query.filter_by(paper_id=free_paper.id).order_by(
                Question.question_number
            )
        ]
        return {
            "exam": jee.id,
            "free_paper": free_paper.id,
            "paid_paper": paid_paper.id,
            "questions": question_ids,
        }


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client, email: str = "learner@example.com") -> dict[str, str]:
    response = client.post(
        "/api/auth/register",
        json={"email": email, "password": "password123", "firstName": "Ada"},
    )
    assert response.status_code == 201
    return _auth_headers(response.get_json()["token"])


def _start_exam(client, headers, paper_id: int) -> dict:
    response = client.post(
        "/api/session/start", headers=headers, json={"mode": "exam", "paperId": paper_id}
    )
    assert response.status_code == 201
    return response.get_json()


def test_registration_login_and_logout_flow(client):
    response = client.post(
        "/api/auth/register",
        json={"email": "Ada@Example.com", "password": "password123", "firstName": "Ada"},
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["redirectUrl"] == "/dashboard"
    assert body["user"]["email"] == "ada@example.com"

    duplicate = client.post(
        "/api/auth/register", json={"email": "ada@example.com", "password": "password123"}
    )
    assert duplicate.status_code == 409

    short = client.post("/api/auth/register", json={"email": "b@example.com", "password": "123"})
    assert short.status_code == 400

    bad_login = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "wrong-pass"}
    )
    assert bad_login.status_code == 401
    assert bad_login.get_json()["error"] == "Invalid credentials."

    login = client.post(
        "/api/auth/login", json={"email": "ada@example.com", "password": "password123"}
    )
    assert login.status_code == 200
    headers = _auth_headers(login.get_json()["token"])

    profile = client.get("/api/auth/user", headers=headers).get_json()
    assert profile["firstName"] == "Ada"

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    revoked = client.get("/api/auth/user", headers=headers)
    assert revoked.status_code == 401
    assert revoked.get_json() == {"error": "Unauthorized", "redirectUrl": "/login"}


def test_catalog_endpoints(client, ids):
    exams = client.get("/api/exams").get_json()["exams"]
    assert [exam["name"] for exam in exams] == ["JEE Main", "GATE"]

    papers = client.get(f"/api/exams/{ids['exam']}/papers").get_json()["papers"]
    assert [paper["year"] for paper in papers] == [2024, 2023]

    assert client.get("/api/exams/999").status_code == 404
    assert client.get("/api/papers/999").status_code == 404

    records = client.get(f"/api/papers/{ids['free_paper']}/questions").get_json()["questions"]
    assert [record["questionNumber"] for record in records] == [1, 2, 3]


def test_browse_filters_and_pages(client, ids):
    url = f"/api/papers/{ids['free_paper']}/browse"

    everything = client.get(url).get_json()
    assert everything["totalQuestions"] == 3
    assert everything["subjects"] == ["Physics", "Chemistry", "Mathematics"]
    assert everything["questions"][1]["correctAnswer"] == "H2O"
    assert everything["questions"][2]["options"] == ["2", "8", "16", "32"]

    physics = client.get(url, query_string={"subject": "Physics"}).get_json()
    assert [item["questionText"] for item in physics["questions"]] == ["What is 2 + 2?"]

    searched = client.get(url, query_string={"search": "WATER", "subject": "all"}).get_json()
    assert searched["totalQuestions"] == 1

    clamped = client.get(url, query_string={"page": 99}).get_json()
    assert clamped["page"] == 1
    assert clamped["totalPages"] == 1


def test_paid_paper_requires_enrollment(client, ids):
    headers = _register(client)

    denied = client.post(
        "/api/session/start",
        headers=headers,
        json={"mode": "exam", "paperId": ids["paid_paper"]},
    )
    assert denied.status_code == 403

    access = client.get(f"/api/exams/{ids['exam']}/access", headers=headers).get_json()
    assert access == {"hasAccess": False, "type": None}

    enrolled = client.post(f"/api/exams/{ids['exam']}/enroll-free", headers=headers)
    assert enrolled.status_code == 201
    again = client.post(f"/api/exams/{ids['exam']}/enroll-free", headers=headers)
    assert again.status_code == 200
    assert again.get_json()["message"] == "Already enrolled"

    purchases = client.get("/api/user/purchases", headers=headers).get_json()["purchases"]
    assert [purchase["type"] for purchase in purchases] == ["free"]

    _start_exam(client, headers, ids["paid_paper"])


def test_purchase_validation(client, ids):
    headers = _register(client)

    bad_type = client.post(
        "/api/purchases", headers=headers, json={"examId": ids["exam"], "type": "gold"}
    )
    assert bad_type.status_code == 400

    created = client.post(
        "/api/purchases",
        headers=headers,
        json={"examId": ids["exam"], "type": "premium", "amount": "499.00"},
    )
    assert created.status_code == 201
    assert created.get_json()["amount"] == "499.00"
    assert client.get(f"/api/exams/{ids['exam']}/access", headers=headers).get_json() == {
        "hasAccess": True,
        "type": "premium",
    }


def test_exam_session_flow(client, ids, clock, seeded_app):
    headers = _register(client)
    q1, q2, q3 = ids["questions"]

    state = _start_exam(client, headers, ids["free_paper"])
    assert state["timeRemaining"] == 60
    assert state["clock"] == "01:00"
    assert state["isTimerRunning"]
    assert "correctAnswer" not in state["currentQuestion"]
    assert [entry["questionId"] for entry in state["palette"]] == [q1, q2, q3]

    clock.advance(10)
    state = client.get("/api/session", headers=headers).get_json()
    assert state["timeRemaining"] == 50

    client.post("/api/session/answer", headers=headers, json={"questionId": q1, "answer": "4"})
    client.post("/api/session/answer", headers=headers, json={"questionId": q2, "answer": "CO2"})
    state = client.post("/api/session/mark", headers=headers, json={"questionId": q3}).get_json()
    assert [entry["status"] for entry in state["palette"]] == ["answered", "answered", "marked"]
    assert state["summary"] == {"answered": 2, "marked": 1, "unanswered": 1, "total": 3}

    state = client.post(
        "/api/session/navigate", headers=headers, json={"direction": "next"}
    ).get_json()
    assert state["currentIndex"] == 1
    assert state["currentQuestion"]["selectedAnswer"] == "CO2"
    bad_index = client.post("/api/session/navigate", headers=headers, json={"index": "2"})
    assert bad_index.status_code == 400

    paused = client.post("/api/session/pause", headers=headers).get_json()
    assert paused["isPaused"]
    clock.advance(100)
    resumed = client.post("/api/session/resume", headers=headers).get_json()
    assert resumed["timeRemaining"] == 50
    assert resumed["isTimerRunning"]

    clock.advance(5)
    submitted = client.post("/api/session/submit", headers=headers)
    assert submitted.status_code == 200
    result = submitted.get_json()
    assert result["score"] == 33
    assert result["timeSpent"] == 15
    assert result["redirectUrl"] == f"/review/{result['attemptId']}"

    assert client.get("/api/session", headers=headers).status_code == 404
    with seeded_app.app_context():
        assert SessionSnapshot.query.count() == 0
        attempt = db.session.get(Attempt, result["attemptId"])
        assert attempt.responses == {str(q1): "4", str(q2): "CO2"}

    review = client.get(f"/api/attempts/{result['attemptId']}/review", headers=headers).get_json()
    assert review["stats"] == {
        "correct": 1,
        "incorrect": 1,
        "unanswered": 1,
        "total": 3,
        "score": 33,
    }
    assert [item["status"] for item in review["questions"]] == [
        "correct",
        "incorrect",
        "unanswered",
    ]
    assert review["questions"][1]["correctAnswer"] == "H2O"

    analysis = client.get("/api/user/analysis", headers=headers).get_json()
    assert analysis["averageScore"] == 33
    assert analysis["averageTimePerQuestion"] == 5
    assert analysis["rating"] == "Needs Improvement"
    assert {item["subject"]: item["accuracy"] for item in analysis["subjects"]} == {
        "Chemistry": 0,
        "Physics": 100,
    }


def test_expired_session_is_submitted_on_next_request(client, ids, clock):
    headers = _register(client)
    q1 = ids["questions"][0]

    _start_exam(client, headers, ids["free_paper"])
    client.post("/api/session/answer", headers=headers, json={"questionId": q1, "answer": "4"})
    clock.advance(61)

    state = client.get("/api/session", headers=headers).get_json()
    assert state["active"] is False
    assert state["autoSubmitted"] is True
    assert state["score"] == 33
    assert state["timeSpent"] == 60

    _start_exam(client, headers, ids["free_paper"])
    clock.advance(300)
    late = client.post(
        "/api/session/answer", headers=headers, json={"questionId": q1, "answer": "4"}
    )
    assert late.status_code == 409
    assert late.get_json()["autoSubmitted"] is True
    assert late.get_json()["score"] == 0

    attempts = client.get("/api/user/attempts", headers=headers).get_json()["attempts"]
    assert len(attempts) == 2


def test_failed_submission_keeps_session(client, ids, clock, monkeypatch):
    headers = _register(client)
    q1 = ids["questions"][0]
    _start_exam(client, headers, ids["free_paper"])
    client.post("/api/session/answer", headers=headers, json={"questionId": q1, "answer": "4"})

    def _unavailable(user, payload):
        raise SubmissionError("Could not save your attempt. Please try again.")

    record_attempt = exam_sessions.record_attempt
    monkeypatch.setattr(exam_sessions, "record_attempt", _unavailable)
    failed = client.post("/api/session/submit", headers=headers)
    assert failed.status_code == 502
    assert failed.get_json()["retryable"] is True

    state = client.get("/api/session", headers=headers).get_json()
    assert state["summary"]["answered"] == 1

    monkeypatch.setattr(exam_sessions, "record_attempt", record_attempt)
    assert client.post("/api/session/submit", headers=headers).status_code == 200


def test_overlapping_submissions_record_one_attempt(client, ids, clock, monkeypatch):
    headers = _register(client)
    q1 = ids["questions"][0]
    _start_exam(client, headers, ids["free_paper"])
    client.post("/api/session/answer", headers=headers, json={"questionId": q1, "answer": "4"})

    consume = exam_sessions.DatabaseSessionStore.consume
    rival_results = []

    def _rival_submits_first(store):
        # Another request finishes submitting after this one loaded the session.
        if not rival_results:
            with exam_sessions.open_session(store.user) as rival:
                rival_results.append(exam_sessions.submit_session(store.user, rival))
        return consume(store)

    monkeypatch.setattr(exam_sessions.DatabaseSessionStore, "consume", _rival_submits_first)
    response = client.post("/api/session/submit", headers=headers)

    assert response.status_code == 409
    assert rival_results[0].score == 33
    attempts = client.get("/api/user/attempts", headers=headers).get_json()["attempts"]
    assert [attempt["id"] for attempt in attempts] == [rival_results[0].attempt_id]
    assert client.get("/api/session", headers=headers).status_code == 404


def test_browse_session_reveals_answers_and_cannot_be_submitted(client, ids, clock):
    headers = _register(client)

    response = client.post(
        "/api/session/start",
        headers=headers,
        json={"mode": "browse", "paperId": ids["free_paper"]},
    )
    state = response.get_json()
    assert state["isTimerRunning"] is False
    assert state["timeRemaining"] == 0
    assert state["currentQuestion"]["correctAnswer"] == "4"

    assert client.post("/api/session/submit", headers=headers).status_code == 400


def test_instant_test_session(client, ids, clock):
    headers = _register(client)
    payload = {
        "mode": "instant",
        "examId": ids["exam"],
        "subjects": ["physics", "CHEMISTRY"],
        "questionCount": 10,
        "durationMinutes": 5,
    }

    assert client.post("/api/session/start", headers=headers, json=payload).status_code == 403
    client.post(f"/api/exams/{ids['exam']}/enroll-free", headers=headers)

    response = client.post("/api/session/start", headers=headers, json=payload)
    assert response.status_code == 201
    state = response.get_json()
    assert state["paperId"] is None
    assert state["totalQuestions"] == 3
    assert state["durationSeconds"] == 300
    assert [entry["questionNumber"] for entry in state["palette"]] == [1, 2, 3]

    result = client.post("/api/session/submit", headers=headers).get_json()
    review = client.get(f"/api/attempts/{result['attemptId']}/review", headers=headers).get_json()
    assert review["attempt"]["paperId"] is None
    assert review["stats"]["total"] == 3

    bad = client.post(
        "/api/session/start",
        headers=headers,
        json={"mode": "instant", "examId": ids["exam"], "questionCount": 0},
    )
    assert bad.status_code == 400


def test_review_session_is_read_only(client, ids, clock):
    headers = _register(client)
    q1, q2, _ = ids["questions"]
    _start_exam(client, headers, ids["free_paper"])
    client.post("/api/session/answer", headers=headers, json={"questionId": q1, "answer": "4"})
    client.post("/api/session/answer", headers=headers, json={"questionId": q2, "answer": "O2"})
    attempt_id = client.post("/api/session/submit", headers=headers).get_json()["attemptId"]

    state = client.post(
        "/api/session/start",
        headers=headers,
        json={"mode": "review", "attemptId": attempt_id},
    ).get_json()
    assert state["readOnly"]
    assert [entry["status"] for entry in state["palette"]] == [
        "correct",
        "incorrect",
        "unanswered",
    ]

    blocked = client.post(
        "/api/session/answer", headers=headers, json={"questionId": q1, "answer": "3"}
    )
    assert blocked.status_code == 400

    assert client.delete("/api/session", headers=headers).status_code == 200
    assert client.get("/api/session", headers=headers).status_code == 404


def test_attempt_endpoints_check_ownership(client, ids):
    owner = _register(client, "owner@example.com")
    other = _register(client, "other@example.com")

    missing_paper = client.post("/api/attempts", headers=owner, json={"mode": "exam"})
    assert missing_paper.status_code == 400

    created = client.post(
        "/api/attempts",
        headers=owner,
        json={
            "mode": "exam",
            "paperId": ids["free_paper"],
            "status": "in_progress",
            "responses": {str(ids["questions"][0]): "4"},
        },
    )
    assert created.status_code == 201
    attempt_id = created.get_json()["id"]

    assert client.get(f"/api/attempts/{attempt_id}", headers=other).status_code == 403
    assert client.get("/api/attempts/999", headers=owner).status_code == 404

    updated = client.patch(
        f"/api/attempts/{attempt_id}",
        headers=owner,
        json={"status": "abandoned", "timeSpent": 42},
    ).get_json()
    assert updated["status"] == "abandoned"
    assert updated["timeSpent"] == 42

    invalid = client.patch(
        f"/api/attempts/{attempt_id}", headers=owner, json={"status": "graded"}
    )
    assert invalid.status_code == 400


def test_session_endpoints_require_login(client):
    response = client.get("/api/session")
    assert response.status_code == 401
    assert response.get_json()["redirectUrl"] == "/login"


def test_doubt_responder(client):
    headers = _register(client)

    reply = client.post(
        "/api/doubts", headers=headers, json={"message": "I feel nervous before exams"}
    ).get_json()
    assert reply["topic"] == "stress"

    general = client.post("/api/doubts", headers=headers, json={"message": "Hello"}).get_json()
    assert general["topic"] == "general"

    assert client.post("/api/doubts", headers=headers, json={"message": "  "}).status_code == 400
