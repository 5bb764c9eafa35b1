"""Exam purchases and access checks."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from .. import db
from ..models import Exam, Paper, Purchase, User

PURCHASE_TYPES = {"free", "premium"}


class AccessError(RuntimeError):
    """Base class for purchase and access problems."""


class AccessValidationError(AccessError):
    """Raised when a purchase request is malformed."""


class AccessDeniedError(AccessError):
    """Raised when a user opens a paid paper without access."""


@dataclass(frozen=True, slots=True)
class ExamAccess:
    has_access: bool
    type: str | None


def list_purchases(user: User) -> list[Purchase]:
    return (
        Purchase.query.filter_by(user_id=user.id)
        .order_by(Purchase.created_at.desc(), Purchase.id.desc())
        .all()
    )


def exam_access(user: User, exam_id: int) -> ExamAccess:
    purchase = Purchase.query.filter_by(
        user_id=user.id, exam_id=exam_id, status="completed"
    ).first()
    if not purchase:
        return ExamAccess(has_access=False, type=None)
    return ExamAccess(has_access=True, type=purchase.type)


def create_purchase(user: User, exam: Exam, data: Mapping[str, Any]) -> Purchase:
    purchase_type = (data.get("type") or "").strip().lower()
    if purchase_type not in PURCHASE_TYPES:
        raise AccessValidationError("Purchase type must be 'free' or 'premium'.")
    try:
        amount = Decimal(str(data.get("amount") or "0"))
    except InvalidOperation as exc:
        raise AccessValidationError("Amount must be a number.") from exc
    if amount < 0:
        raise AccessValidationError("Amount cannot be negative.")

    purchase = Purchase(
        user_id=user.id,
        exam_id=exam.id,
        type=purchase_type,
        amount=amount,
        payment_reference=data.get("paymentReference"),
        status=data.get("status") or "completed",
    )
    db.session.add(purchase)
    db.session.commit()
    return purchase


def enroll_free(user: User, exam: Exam) -> tuple[Purchase | None, ExamAccess]:
    """Grant free access, returning ``(None, access)`` when already enrolled."""

    access = exam_access(user, exam.id)
    if access.has_access:
        return None, access
    purchase = Purchase(user_id=user.id, exam_id=exam.id, type="free", amount=0, status="completed")
    db.session.add(purchase)
    db.session.commit()
    return purchase, ExamAccess(has_access=True, type="free")


def ensure_paper_access(user: User, paper: Paper) -> None:
    if paper.is_free:
        return
    if not exam_access(user, paper.exam_id).has_access:
        raise AccessDeniedError("Purchase or enroll in this exam to open the paper.")


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
]
