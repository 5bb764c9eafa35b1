"""Performance analysis over a user's recorded attempts."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from ..engine.scoring import grade_responses
from ..models import User
from .attempts import attempt_questions, list_attempts, response_map
from .catalog import CatalogNotFoundError

logger = logging.getLogger(__name__)

SCORE_BANDS = (("0-25%", 0, 25), ("25-50%", 25, 50), ("50-75%", 50, 75), ("75-100%", 75, 101))


@dataclass(frozen=True, slots=True)
class SubjectAccuracy:
    subject: str
    attempted: int
    correct: int

    @property
    def accuracy(self) -> int:
        if not self.attempted:
            return 0
        return round(self.correct * 100 / self.attempted)


@dataclass(slots=True)
class PerformanceAnalysis:
    total_attempts: int
    completed_attempts: int
    average_score: int
    average_time_per_question: int
    subjects: list[SubjectAccuracy] = field(default_factory=list)
    score_distribution: dict[str, int] = field(default_factory=dict)

    @property
    def rating(self) -> str:
        if self.average_score >= 75:
            return "Excellent"
        if self.average_score >= 60:
            return "Good"
        return "Needs Improvement"


def _subject_accuracy(attempts) -> list[SubjectAccuracy]:
    attempted: dict[str, int] = defaultdict(int)
    correct: dict[str, int] = defaultdict(int)
    for attempt in attempts:
        try:
            questions = attempt_questions(attempt)
        except CatalogNotFoundError:
            logger.warning("Skipping attempt %s: its paper has no questions", attempt.id)
            continue
        report = grade_responses(questions, response_map(attempt.responses))
        for item in report.items:
            if item.status == "unanswered":
                continue
            subject = item.question.subject or "General"
            attempted[subject] += 1
            if item.status == "correct":
                correct[subject] += 1
    return [
        SubjectAccuracy(subject=subject, attempted=attempted[subject], correct=correct[subject])
        for subject in sorted(attempted)
    ]


def analyse_performance(user: User) -> PerformanceAnalysis:
    attempts = list_attempts(user)
    completed = [attempt for attempt in attempts if attempt.status == "completed"]

    average_score = 0
    if completed:
        average_score = round(sum(attempt.score or 0 for attempt in completed) / len(completed))

    total_time = sum(attempt.time_spent or 0 for attempt in attempts)
    total_questions = sum(attempt.total_questions or 0 for attempt in attempts)
    average_time = round(total_time / total_questions) if total_questions else 0

    distribution = {
        label: sum(1 for attempt in completed if low <= (attempt.score or 0) < high)
        for label, low, high in SCORE_BANDS
    }

    return PerformanceAnalysis(
        total_attempts=len(attempts),
        completed_attempts=len(completed),
        average_score=average_score,
        average_time_per_question=average_time,
        subjects=_subject_accuracy(completed),
        score_distribution=distribution,
    )


__all__ = ["PerformanceAnalysis", "SubjectAccuracy", "analyse_performance"]
