"""Scripted doubt-clearing responder.

Replies are picked by keyword from a fixed table; the first matching rule
wins and anything else gets the generic prompt for more context.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


class DoubtValidationError(RuntimeError):
    """Raised when a doubt message is empty."""


@dataclass(frozen=True, slots=True)
class DoubtRule:
    topic: str
    keywords: tuple[str, ...]
    response: str


@dataclass(frozen=True, slots=True)
class DoubtReply:
    topic: str
    message: str
    created_at: datetime


RULES: tuple[DoubtRule, ...] = (
    DoubtRule(
        "physics",
        ("physics", "mechanics", "kinematics"),
        "Great question about Physics!\n\n"
        "For mechanics and kinematics problems:\n\n"
        "1. Start with fundamentals: identify what is given and what is asked\n"
        "2. Draw diagrams to see the situation\n"
        "3. Pick equations that match the variables you have\n"
        "4. Check units on the final answer\n\n"
        "Would you like me to explain a specific physics concept?",
    ),
    DoubtRule(
        "chemistry",
        ("chemistry", "organic", "inorganic"),
        "Chemistry can be challenging!\n\n"
        "Strategies that work:\n\n"
        "1. Master periodic trends\n"
        "2. Understand reaction mechanisms, not just outcomes\n"
        "3. Practise numericals of every type\n"
        "4. Use mnemonics for long reaction series\n\n"
        "Is there a chemistry topic you are struggling with?",
    ),
    DoubtRule(
        "mathematics",
        ("mathematics", "calculus", "algebra"),
        "Mathematics is about practice and patterns!\n\n"
        "1. Build a strong base in fundamentals\n"
        "2. Practise a little every day\n"
        "3. Understand where formulas come from\n"
        "4. Solve previous years' papers to spot patterns\n\n"
        "Which math topic would you like help with?",
    ),
    DoubtRule(
        "performance",
        ("weak", "improve", "performance"),
        "Let's look at your performance!\n\n"
        "1. Spend most of your study time on weak subjects\n"
        "2. Practise with real time limits\n"
        "3. Revise on a 1-3-7-21 day cycle\n"
        "4. Take regular mock tests\n\n"
        "Your attempt history on the analysis page shows subject-wise accuracy.",
    ),
    DoubtRule(
        "time",
        ("time", "speed", "fast"),
        "Time management is crucial for entrance exams!\n\n"
        "1. Two-minute rule: mark slow questions for review and move on\n"
        "2. Allocate time per section\n"
        "3. Answer the easy questions first\n"
        "4. Practise under exam conditions\n\n"
        "Accuracy matters more than speed; speed follows practice.",
    ),
    DoubtRule(
        "stress",
        ("stress", "anxiety", "nervous"),
        "Exam stress is completely normal.\n\n"
        "1. Try 4-7-8 breathing\n"
        "2. Picture yourself succeeding\n"
        "3. Sleep well before the exam\n"
        "4. A short walk clears the mind\n\n"
        "You have prepared; trust your preparation.",
    ),
)

DEFAULT_RESPONSE = (
    "That's a good question!\n\n"
    "Could you share a bit more context?\n\n"
    "- For a concept, tell me the subject area\n"
    "- For a problem, paste the question\n"
    "- For study strategy, tell me what you find hard\n\n"
    "The more detail you give, the better I can help."
)


def respond(message: str | None, *, now: datetime | None = None) -> DoubtReply:
    text = (message or "").strip()
    if not text:
        raise DoubtValidationError("Message cannot be empty.")

    lowered = text.lower()
    created_at = now or datetime.utcnow()
    for rule in RULES:
        if any(keyword in lowered for keyword in rule.keywords):
            return DoubtReply(topic=rule.topic, message=rule.response, created_at=created_at)
    return DoubtReply(topic="general", message=DEFAULT_RESPONSE, created_at=created_at)


__all__ = ["DoubtReply", "DoubtRule", "DoubtValidationError", "RULES", "respond"]
