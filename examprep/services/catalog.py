"""Exam, paper and question catalogue helpers."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .. import db
from ..engine.questions import (
    Question as SessionQuestion,
    find_unscoreable,
    normalize_question,
    selectable_options,
)
from ..models import Exam, Paper, Question

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """Base class for catalogue problems."""


class CatalogNotFoundError(CatalogError):
    """Raised when an exam, paper or question set does not exist."""


class QuestionImportError(CatalogError):
    """Raised when strict import rejects questions that cannot be scored."""


@dataclass(slots=True)
class BrowsePage:
    items: list[dict[str, Any]]
    page: int
    total_pages: int
    total_items: int
    subjects: list[str]
    difficulties: list[str]


def list_exams() -> list[Exam]:
    return Exam.query.order_by(Exam.is_popular.desc(), Exam.id).all()


def get_exam(exam_id: int) -> Exam:
    exam = db.session.get(Exam, exam_id)
    if not exam:
        raise CatalogNotFoundError("Exam not found.")
    return exam


def list_papers(exam_id: int) -> list[Paper]:
    exam = get_exam(exam_id)
    return Paper.query.filter_by(exam_id=exam.id).order_by(Paper.year.desc(), Paper.id).all()


def get_paper(paper_id: int) -> Paper:
    paper = db.session.get(Paper, paper_id)
    if not paper:
        raise CatalogNotFoundError("Paper not found.")
    return paper


def question_records(paper: Paper) -> list[dict[str, Any]]:
    ordered = Question.query.filter_by(paper_id=paper.id).order_by(Question.question_number)
    return [question.to_record() for question in ordered]


def load_paper_questions(paper: Paper) -> list[SessionQuestion]:
    """Normalised questions for ``paper`` in question-number order."""

    questions = [normalize_question(record) for record in question_records(paper)]
    if not questions:
        raise CatalogNotFoundError("No questions found for this paper.")
    return questions


def _matches_search(question: SessionQuestion, term: str) -> bool:
    if not term:
        return True
    haystacks = (question.text, question.subject or "", question.topic or "")
    return any(term in value.lower() for value in haystacks)


def _distinct(values: Iterable[str | None]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.append(value)
    return seen


def browse_question_payload(question: SessionQuestion) -> dict[str, Any]:
    return {
        "id": question.id,
        "questionNumber": question.question_number,
        "questionText": question.text,
        "options": selectable_options(question),
        "correctAnswer": question.correct_answer_text,
        "explanation": question.explanation,
        "subject": question.subject,
        "topic": question.topic,
        "difficulty": question.difficulty,
    }


def browse_paper(
    paper: Paper,
    *,
    search: str | None = None,
    subject: str | None = None,
    difficulty: str | None = None,
    page: int = 1,
    page_size: int = 5,
) -> BrowsePage:
    questions = load_paper_questions(paper)
    term = (search or "").strip().lower()
    subject = None if subject in (None, "", "all") else subject
    difficulty = None if difficulty in (None, "", "all") else difficulty

    filtered = [
        question
        for question in questions
        if _matches_search(question, term)
        and (subject is None or question.subject == subject)
        and (difficulty is None or question.difficulty == difficulty)
    ]

    total_pages = max(math.ceil(len(filtered) / page_size), 1)
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size
    return BrowsePage(
        items=[
            browse_question_payload(question)
            for question in filtered[start : start + page_size]
        ],
        page=page,
        total_pages=total_pages,
        total_items=len(filtered),
        subjects=_distinct(question.subject for question in questions),
        difficulties=_distinct(question.difficulty for question in questions),
    )


def import_questions(
    paper: Paper, records: Iterable[Mapping[str, Any]], *, strict: bool = False
) -> list[Question]:
    """Insert raw question records into ``paper``.

    With ``strict`` set, the whole batch is rejected when any record would
    normalise to an unscoreable question.
    """

    records = list(records)
    existing = Question.query.filter_by(paper_id=paper.id).count()
    rows: list[Question] = []
    checks: list[SessionQuestion] = []
    for offset, record in enumerate(records, start=1):
        raw_number = record.get("questionNumber") or record.get("question_number")
        try:
            number = int(raw_number or existing + offset)
        except (TypeError, ValueError) as exc:
            raise QuestionImportError(
                f"Record {offset} has a non-numeric question number: {raw_number!r}"
            ) from exc
        text = record.get("questionText") or record.get("question_text") or ""
        if not text:
            raise QuestionImportError(f"Question {number} has no text.")
        row = Question(
            paper_id=paper.id,
            question_number=number,
            question_text=text,
            options=record.get("options"),
            correct_answer=str(record.get("correctAnswer") or record.get("correct_answer") or ""),
            explanation=record.get("explanation"),
            subject=record.get("subject"),
            topic=record.get("topic"),
            difficulty=record.get("difficulty"),
        )
        rows.append(row)
        checks.append(
            normalize_question(
                {
                    "id": number,
                    "questionNumber": number,
                    "questionText": text,
                    "options": row.options,
                    "correctAnswer": row.correct_answer,
                }
            )
        )

    unscoreable = find_unscoreable(checks)
    if unscoreable:
        numbers = ", ".join(str(question.question_number) for question in unscoreable)
        if strict:
            raise QuestionImportError(f"Questions without a resolvable answer: {numbers}")
        logger.warning("Importing %d unscoreable question(s): %s", len(unscoreable), numbers)

    db.session.add_all(rows)
    paper.total_questions = existing + len(rows)
    db.session.commit()
    return rows


__all__ = [
    "BrowsePage",
    "CatalogError",
    "CatalogNotFoundError",
    "QuestionImportError",
    "browse_paper",
    "browse_question_payload",
    "get_exam",
    "get_paper",
    "import_questions",
    "list_exams",
    "list_papers",
    "load_paper_questions",
    "question_records",
]
