from __future__ import annotations

import json
from pathlib import Path

import click

from examprep import create_app, db
from examprep.models import Exam, Paper, Purchase, User
from examprep.services.catalog import CatalogError, get_paper, import_questions

app = create_app()

EXAMS = (
    {
        "name": "JEE Main",
        "description": "Joint Entrance Examination (Main) for engineering admission",
        "icon": "graduation-cap",
        "category": "Engineering",
        "is_popular": True,
        "years_available": 10,
        "subjects": ("Physics", "Chemistry", "Mathematics"),
    },
    {
        "name": "NEET",
        "description": "National Eligibility cum Entrance Test for medical admission",
        "icon": "hospital",
        "category": "Medical",
        "is_popular": True,
        "years_available": 8,
        "subjects": ("Physics", "Chemistry", "Biology"),
    },
    {
        "name": "GATE",
        "description": "Graduate Aptitude Test in Engineering",
        "icon": "gear",
        "category": "Engineering",
        "is_popular": False,
        "years_available": 12,
        "subjects": ("Computer Science", "Electronics"),
    },
    {
        "name": "CAT",
        "description": "Common Admission Test for MBA programs",
        "icon": "briefcase",
        "category": "Management",
        "is_popular": False,
        "years_available": 6,
        "subjects": ("Quantitative Aptitude", "Logical Reasoning"),
    },
)

PAPER_YEARS = ((2024, False), (2023, True), (2022, True))
QUESTIONS_PER_PAPER = 6
DIFFICULTIES = ("Easy", "Medium", "Hard")


def _demo_question(exam: dict, year: int, number: int) -> dict:
    """One demo record; the option shape rotates so every ingestion path is seeded."""

    subject = exam["subjects"][(number - 1) % len(exam["subjects"])]
    choices = [f"{subject} choice {letter} ({year}/{number})" for letter in "ABCD"]
    correct_index = (number + year) % 4
    shape = number % 3
    if shape == 0:
        options: object = choices
        correct_answer = choices[correct_index]
    elif shape == 1:
        options = json.dumps(choices)
        correct_answer = "ABCD"[correct_index]
    else:
        options = {letter: text for letter, text in zip("ABCD", choices)}
        correct_answer = "ABCD"[correct_index]
    return {
        "questionNumber": number,
        "questionText": f"{exam['name']} {year} Q{number}: a {subject.lower()} problem.",
        "options": options,
        "correctAnswer": correct_answer,
        "explanation": f"The answer is {choices[correct_index]}.",
        "subject": subject,
        "topic": f"{subject} fundamentals",
        "difficulty": DIFFICULTIES[(number - 1) % len(DIFFICULTIES)],
    }


@app.cli.command("init-db")
def init_db() -> None:
    """Initialise the database schema."""
    db.create_all()
    app.logger.info("Database tables created")


@app.cli.command("seed-demo")
def seed_demo() -> None:
    """Seed the database with demo exams, papers and a demo learner."""
    db.drop_all()
    db.create_all()

    learner = User(email="learner@example.com", first_name="Demo", last_name="Learner")
    learner.set_password("password123")
    db.session.add(learner)

    for entry in EXAMS:
        exam = Exam(
            name=entry["name"],
            description=entry["description"],
            icon=entry["icon"],
            category=entry["category"],
            is_popular=entry["is_popular"],
            years_available=entry["years_available"],
        )
        db.session.add(exam)
        for year, is_free in PAPER_YEARS:
            paper = Paper(
                exam=exam,
                year=year,
                title=f"{entry['name']} {year}",
                duration=180,
                is_free=is_free,
            )
            db.session.add(paper)
            db.session.flush()
            records = [
                _demo_question(entry, year, number)
                for number in range(1, QUESTIONS_PER_PAPER + 1)
            ]
            import_questions(paper, records, strict=True)
        exam.total_questions = QUESTIONS_PER_PAPER * len(PAPER_YEARS)

    db.session.flush()
    first_exam = Exam.query.filter_by(name=EXAMS[0]["name"]).first()
    db.session.add(Purchase(user=learner, exam=first_exam, type="free", amount=0))
    db.session.commit()
    app.logger.info("Demo data created: learner login learner@example.com / password123")


@app.cli.command("import-questions")
@click.argument("source", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--paper-id", type=int, required=True, help="Paper receiving the questions.")
@click.option(
    "--strict/--lenient",
    default=None,
    help="Reject the file when any answer cannot be resolved.",
)
def import_questions_command(source: Path, paper_id: int, strict: bool | None) -> None:
    """Import question records from a JSON file into a paper."""
    if strict is None:
        strict = app.config["STRICT_QUESTION_IMPORT"]
    records = json.loads(source.read_text(encoding="utf-8"))
    if isinstance(records, dict):
        records = records.get("questions", [])
    try:
        paper = get_paper(paper_id)
        rows = import_questions(paper, records, strict=strict)
    except CatalogError as exc:
        raise click.ClickException(str(exc)) from exc
    app.logger.info("Imported %d questions into paper %s", len(rows), paper_id)
