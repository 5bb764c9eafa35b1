from __future__ import annotations

from datetime import datetime, timedelta

from flask_login import UserMixin
from sqlalchemy import Numeric, UniqueConstraint
from werkzeug.security import check_password_hash, generate_password_hash

from . import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    first_name = db.Column(db.String(255))
    last_name = db.Column(db.String(255))
    profile_image_url = db.Column(db.String(255))
    password_hash = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    auth_tokens = db.relationship(
        "AuthToken", back_populates="user", cascade="all, delete-orphan"
    )
    purchases = db.relationship("Purchase", back_populates="user", cascade="all, delete-orphan")
    attempts = db.relationship("Attempt", back_populates="user", cascade="all, delete-orphan")
    session_snapshots = db.relationship(
        "SessionSnapshot", back_populates="user", cascade="all, delete-orphan"
    )

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def issue_token(
        self, *, expires_at: datetime | None = None, ttl_days: int = 7
    ) -> "AuthToken":
        from secrets import token_urlsafe

        expiry = expires_at or datetime.utcnow() + timedelta(days=ttl_days)
        token = AuthToken(token=token_urlsafe(32), user=self, expires_at=expiry, revoked=False)
        db.session.add(token)
        return token


class AuthToken(db.Model):
    __tablename__ = "auth_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    token = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)

    user = db.relationship("User", back_populates="auth_tokens")


class Exam(db.Model):
    __tablename__ = "exams"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    icon = db.Column(db.String(255))
    category = db.Column(db.String(255))
    is_popular = db.Column(db.Boolean, nullable=False, default=False)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    years_available = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    papers = db.relationship("Paper", back_populates="exam", cascade="all, delete-orphan")
    purchases = db.relationship("Purchase", back_populates="exam")


class Paper(db.Model):
    __tablename__ = "papers"

    id = db.Column(db.Integer, primary_key=True)
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    total_questions = db.Column(db.Integer, nullable=False, default=0)
    duration = db.Column(db.Integer)  # minutes
    is_free = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    exam = db.relationship("Exam", back_populates="papers")
    questions = db.relationship(
        "Question",
        back_populates="paper",
        cascade="all, delete-orphan",
        order_by="Question.question_number",
    )
    attempts = db.relationship("Attempt", back_populates="paper")


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    paper_id = db.Column(db.Integer, db.ForeignKey("papers.id"), nullable=False)
    question_number = db.Column(db.Integer, nullable=False)
    question_text = db.Column(db.Text, nullable=False)
    options = db.Column(db.JSON, nullable=False)  # list, JSON string or label mapping
    correct_answer = db.Column(db.String(255), nullable=False)
    explanation = db.Column(db.Text)
    subject = db.Column(db.String(255))
    topic = db.Column(db.String(255))
    difficulty = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    paper = db.relationship("Paper", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("paper_id", "question_number", name="uq_question_paper_number"),
    )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "paperId": self.paper_id,
            "questionNumber": self.question_number,
            "questionText": self.question_text,
            "options": self.options,
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
            "subject": self.subject,
            "topic": self.topic,
            "difficulty": self.difficulty,
        }


class Purchase(db.Model):
    __tablename__ = "purchases"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"), nullable=False)
    type = db.Column(db.String(20), nullable=False)  # free or premium
    amount = db.Column(Numeric(10, 2), nullable=False, default=0)
    payment_reference = db.Column(db.String(255))
    status = db.Column(db.String(20), nullable=False, default="completed")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User", back_populates="purchases")
    exam = db.relationship("Exam", back_populates="purchases")


class Attempt(db.Model):
    __tablename__ = "attempts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    paper_id = db.Column(db.Integer, db.ForeignKey("papers.id"))  # null for instant tests
    exam_id = db.Column(db.Integer, db.ForeignKey("exams.id"))
    mode = db.Column(db.String(20), nullable=False)
    responses = db.Column(db.JSON, nullable=False, default=dict)
    question_ids = db.Column(db.JSON)
    score = db.Column(db.Integer)
    total_questions = db.Column(db.Integer)
    time_spent = db.Column(db.Integer)  # seconds
    status = db.Column(db.String(20), nullable=False, default="completed")
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)

    user = db.relationship("User", back_populates="attempts")
    paper = db.relationship("Paper", back_populates="attempts")
    exam = db.relationship("Exam")


class SessionSnapshot(db.Model):
    __tablename__ = "session_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    name = db.Column(db.String(100), nullable=False)
    payload = db.Column(db.Text, nullable=False)
    tick_anchor = db.Column(db.Float)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    user = db.relationship("User", back_populates="session_snapshots")

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_session_snapshot_user_name"),)
