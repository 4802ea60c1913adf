# Overview: Service-layer operations for the sales and payout ledger.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import Transaction, TransactionItem, Withdrawal
from ..models.ledger import TRANSACTION_VERIFIED
from kantin.time_utils import start_of_today
"""
Ledger invariants

- A Transaction's total_amount equals the sum of its item subtotals.
- Transactions are only written once the payment proof has been accepted.
- Withdrawals are created by sellers and mutated only by admin processing.
"""

WITHDRAWAL_MUTABLE_FIELDS = {
    "status",
    "transfer_proof_url",
    "admin_notes",
    "processed_at",
    "processed_by_user_id",
}


class LedgerError(Exception):
    """Raised for ledger operation errors."""
    pass


def build_transaction(
    *,
    customer_name: str,
    lines: list[dict],
    status: str,
    seller_id: int | None,
    payment_proof_url: str | None = None,
    verification_attempts: int = 1,
    verification_notes: str | None = None,
) -> Transaction:
    """
    Build (but do not persist) a Transaction from line snapshots.

    Each line is a dict with product_id, product_name, quantity and price.
    Subtotals and the total are derived here, never taken from the caller.
    """
    if not lines:
        raise LedgerError("Transaction requires at least one line")

    items = []
    for position, line in enumerate(lines):
        quantity = int(line["quantity"])
        price = int(line["price"])
        items.append(
            TransactionItem(
                position=position,
                product_id=line["product_id"],
                product_name=line["product_name"],
                quantity=quantity,
                price=price,
                subtotal=quantity * price,
            )
        )

    return Transaction(
        customer_name=customer_name,
        items=items,
        total_amount=sum(item.subtotal for item in items),
        status=status,
        seller_id=seller_id,
        payment_proof_url=payment_proof_url,
        verification_attempts=verification_attempts,
        verification_notes=verification_notes,
    )


def create_transaction(transaction: Transaction, *, commit: bool = True) -> Transaction:
    db.session.add(transaction)
    db.session.flush()
    if commit:
        db.session.commit()
    return transaction


def get_transaction(transaction_id: int) -> Transaction | None:
    return db.session.get(Transaction, transaction_id)


def list_transactions(
    *,
    seller_id: int | None = None,
    status: str | None = None,
    since: Optional[datetime] = None,
) -> list[Transaction]:
    query = db.session.query(Transaction)
    if seller_id is not None:
        query = query.filter(Transaction.seller_id == seller_id)
    if status is not None:
        query = query.filter(Transaction.status == status)
    if since is not None:
        query = query.filter(Transaction.created_at >= since)
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()


def list_today_transactions() -> list[Transaction]:
    return list_transactions(since=start_of_today())


def total_verified_revenue(seller_id: int | None = None) -> int:
    query = db.session.query(db.func.coalesce(db.func.sum(Transaction.total_amount), 0)).filter(
        Transaction.status == TRANSACTION_VERIFIED
    )
    if seller_id is not None:
        query = query.filter(Transaction.seller_id == seller_id)
    return int(query.scalar() or 0)


# =============================================================================
# WITHDRAWALS
# =============================================================================

def create_withdrawal(withdrawal: Withdrawal, *, commit: bool = True) -> Withdrawal:
    db.session.add(withdrawal)
    db.session.flush()
    if commit:
        db.session.commit()
    return withdrawal


def get_withdrawal(withdrawal_id: int) -> Withdrawal | None:
    return db.session.get(Withdrawal, withdrawal_id)


def update_withdrawal(withdrawal_id: int, patch: dict, *, commit: bool = True) -> Withdrawal:
    withdrawal = get_withdrawal(withdrawal_id)
    if withdrawal is None:
        raise LedgerError(f"Withdrawal {withdrawal_id} not found")
    for key, value in patch.items():
        if key not in WITHDRAWAL_MUTABLE_FIELDS:
            raise LedgerError(f"Withdrawal field '{key}' is not writable")
        setattr(withdrawal, key, value)
    if commit:
        db.session.commit()
    return withdrawal


def list_withdrawals(*, seller_id: int | None = None, status: str | None = None) -> list[Withdrawal]:
    query = db.session.query(Withdrawal)
    if seller_id is not None:
        query = query.filter(Withdrawal.seller_id == seller_id)
    if status is not None:
        query = query.filter(Withdrawal.status == status)
    return query.order_by(Withdrawal.requested_at.desc(), Withdrawal.id.desc()).all()
