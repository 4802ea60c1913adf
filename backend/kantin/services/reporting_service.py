# Overview: Dashboard figures for the administrator.

from __future__ import annotations

from ..extensions import db
from ..models import User, Product, Transaction, Withdrawal
from ..models.auth import ROLE_SELLER
from ..models.ledger import TRANSACTION_VERIFIED, WITHDRAWAL_PENDING
from . import audit_service, ledger_service


def admin_dashboard_stats() -> dict:
    return {
        "total_revenue": ledger_service.total_verified_revenue(),
        "total_transactions": db.session.query(db.func.count(Transaction.id))
        .filter(Transaction.status == TRANSACTION_VERIFIED)
        .scalar() or 0,
        "total_sellers": db.session.query(db.func.count(User.id)).filter(User.role == ROLE_SELLER).scalar() or 0,
        "total_products": db.session.query(db.func.count(Product.id)).scalar() or 0,
        "pending_withdrawals": db.session.query(db.func.count(Withdrawal.id))
        .filter(Withdrawal.status == WITHDRAWAL_PENDING)
        .scalar() or 0,
        "failed_validations": audit_service.count_failed_validations(),
    }
