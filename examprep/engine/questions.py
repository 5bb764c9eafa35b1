"""Question normalisation at the data-ingestion boundary.

Paper data arrives in several shapes: options may be a list, a JSON encoded
list or a ``{"A": ..., "B": ...}`` mapping, and the correct answer may be the
literal option text or a single letter label. Everything past this module only
ever sees :class:`Question` with an ordered ``options`` tuple and a resolved
``correct_answer_text``.

Malformed records never raise. They degrade to an unscoreable question and a
logged warning so one bad row cannot block a whole paper.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

logger = logging.getLogger(__name__)

BROWSE_OPTION_MAX_LENGTH = 120
_SUSPICIOUS_OPTION = re.compile(r"first term|explanation|solution|=|\n")
_LETTER_LABEL = re.compile(r"^[A-Z]$")


@dataclass(frozen=True, slots=True)
class ListOptions:
    values: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class JsonOptions:
    payload: str


@dataclass(frozen=True, slots=True)
class LabelledOptions:
    items: tuple[tuple[str, str], ...]


@dataclass(frozen=True, slots=True)
class UnknownOptions:
    value: Any


OptionsShape = ListOptions | JsonOptions | LabelledOptions | UnknownOptions


@dataclass(frozen=True, slots=True)
class Question:
    id: int
    question_number: int
    text: str
    options: tuple[str, ...]
    correct_answer: str
    correct_answer_text: str | None
    explanation: str | None = None
    subject: str | None = None
    topic: str | None = None
    difficulty: str | None = None

    @property
    def is_scoreable(self) -> bool:
        return self.correct_answer_text is not None

    def is_correct(self, answer: str | None) -> bool:
        if answer is None or self.correct_answer_text is None:
            return False
        return answer == self.correct_answer_text


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def _label_order(item: tuple[str, str]) -> tuple[int, str]:
    label = item[0]
    return (len(label), label)


def classify_options(value: Any) -> OptionsShape:
    """Tag a raw ``options`` value with the shape it was delivered in."""

    if isinstance(value, str):
        return JsonOptions(value)
    if isinstance(value, Mapping):
        return LabelledOptions(tuple((str(key), _as_text(text)) for key, text in value.items()))
    if isinstance(value, (list, tuple)):
        return ListOptions(tuple(_as_text(item) for item in value))
    return UnknownOptions(value)


def options_from_shape(shape: OptionsShape, *, question_id: Any = None) -> tuple[str, ...]:
    if isinstance(shape, ListOptions):
        return shape.values

    if isinstance(shape, LabelledOptions):
        return tuple(text for _, text in sorted(shape.items, key=_label_order))

    if isinstance(shape, JsonOptions):
        try:
            decoded = json.loads(shape.payload)
        except json.JSONDecodeError:
            logger.warning(
                "Failed to parse options JSON string for question %s: %r",
                question_id,
                shape.payload,
            )
            return ()
        if not isinstance(decoded, list):
            logger.warning(
                "Options JSON for question %s is not a list: %r", question_id, shape.payload
            )
            return ()
        return tuple(_as_text(item) for item in decoded)

    logger.warning("Unexpected options format for question %s: %r", question_id, shape.value)
    return ()


def normalize_options(value: Any, *, question_id: Any = None) -> tuple[str, ...]:
    return options_from_shape(classify_options(value), question_id=question_id)


def resolve_correct_answer(
    correct_answer: Any, options: Sequence[str], *, question_id: Any = None
) -> str | None:
    """Return the literal option text the answer key points at, or ``None``."""

    answer = _as_text(correct_answer)
    if _LETTER_LABEL.match(answer):
        index = ord(answer) - ord("A")
        if index >= len(options):
            logger.warning(
                "Answer label %s is out of range for question %s (%d options)",
                answer,
                question_id,
                len(options),
            )
            return None
        candidate = options[index]
    else:
        candidate = answer

    matches = sum(1 for option in options if option == candidate)
    if matches != 1:
        logger.warning(
            "Correct answer for question %s matches %d options; treating as unscoreable",
            question_id,
            matches,
        )
        return None
    return candidate


def _field(raw: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return default


def normalize_question(raw: Mapping[str, Any]) -> Question:
    """Build a :class:`Question` from a raw API or database record."""

    question_id = _field(raw, "id")
    if question_id is None:
        raise ValueError("Question record is missing an id.")

    options = normalize_options(_field(raw, "options"), question_id=question_id)
    correct_answer = _as_text(_field(raw, "correctAnswer", "correct_answer", default=""))
    return Question(
        id=question_id,
        question_number=int(_field(raw, "questionNumber", "question_number", default=0)),
        text=_as_text(_field(raw, "questionText", "question_text", "text", default="")),
        options=options,
        correct_answer=correct_answer,
        correct_answer_text=resolve_correct_answer(
            correct_answer, options, question_id=question_id
        ),
        explanation=_field(raw, "explanation"),
        subject=_field(raw, "subject"),
        topic=_field(raw, "topic"),
        difficulty=_field(raw, "difficulty"),
    )


def normalize_questions(records: Iterable[Mapping[str, Any]]) -> list[Question]:
    return [normalize_question(record) for record in records]


def selectable_options(question: Question) -> list[str]:
    """Options safe to render as choices in browse views.

    Source data sometimes leaks the worked solution into the options list.
    This filter only decides what is shown; scoring always uses
    ``question.options``.
    """

    kept: list[str] = []
    for option in question.options:
        if len(option) > BROWSE_OPTION_MAX_LENGTH or _SUSPICIOUS_OPTION.search(option.lower()):
            logger.warning(
                "Skipping suspicious option for question %s (may be explanation/solution): %r",
                question.id,
                option,
            )
            continue
        kept.append(option)
    if len(kept) != len(question.options):
        logger.info(
            "Filtered %d option(s) from question %s",
            len(question.options) - len(kept),
            question.id,
        )
    return kept


def find_unscoreable(questions: Iterable[Question]) -> list[Question]:
    return [question for question in questions if not question.is_scoreable]


__all__ = [
    "BROWSE_OPTION_MAX_LENGTH",
    "JsonOptions",
    "LabelledOptions",
    "ListOptions",
    "OptionsShape",
    "Question",
    "UnknownOptions",
    "classify_options",
    "find_unscoreable",
    "normalize_options",
    "normalize_question",
    "normalize_questions",
    "options_from_shape",
    "resolve_correct_answer",
    "selectable_options",
]
