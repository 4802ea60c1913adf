# Overview: Append-only store for rejected payment proofs.

from __future__ import annotations

from ..extensions import db
from ..models import FailedValidation
from kantin.time_utils import start_of_today


def create_failed_validation(
    *,
    customer_name: str,
    attempted_amount: int,
    failure_reason: str,
    image_url: str | None = None,
) -> FailedValidation:
    record = FailedValidation(
        customer_name=customer_name,
        attempted_amount=attempted_amount,
        failure_reason=failure_reason,
        image_url=image_url,
    )
    db.session.add(record)
    db.session.commit()
    return record


def list_failed_validations(today_only: bool = False) -> list[FailedValidation]:
    query = db.session.query(FailedValidation)
    if today_only:
        query = query.filter(FailedValidation.created_at >= start_of_today())
    return query.order_by(FailedValidation.created_at.desc(), FailedValidation.id.desc()).all()


def count_failed_validations() -> int:
    return db.session.query(db.func.count(FailedValidation.id)).scalar() or 0
