# Overview: Seller balance and withdrawal rules.

"""
Balance & Withdrawal Service

A seller's balance is never stored. It is recomputed on every read from the
ledger:

    total_sales       = sum(total_amount) of verified transactions
    total_withdrawn   = sum(amount) of completed withdrawals
    pending_hold      = sum(amount) of pending withdrawals
    available_balance = total_sales - total_withdrawn - pending_hold

The requested amount (not the net payout) is what gets debited. The
consignment fee is round-half-up of amount * FEE_RATE and the net payout is
always amount - fee, so fee + net == amount exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..extensions import db
from ..models import User, Withdrawal
from ..models.ledger import (
    TRANSACTION_VERIFIED,
    WITHDRAWAL_PENDING,
    WITHDRAWAL_COMPLETED,
    WITHDRAWAL_REJECTED,
)
from kantin.time_utils import utcnow
from . import ledger_service, catalog_service
from .concurrency import atomic, lock_for_update

logger = logging.getLogger(__name__)

FEE_RATE = Decimal("0.08")
MIN_WITHDRAWAL = 10_000


class WithdrawalError(Exception):
    """Raised for withdrawal operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class BelowMinimumError(WithdrawalError):
    pass


class InsufficientBalanceError(WithdrawalError):
    pass


class WithdrawalStateError(WithdrawalError):
    """Withdrawal is not in a state that allows the requested action."""


@dataclass(frozen=True)
class SellerBalance:
    total_sales: int
    total_withdrawn: int
    pending_hold: int

    @property
    def available_balance(self) -> int:
        return self.total_sales - self.total_withdrawn - self.pending_hold

    def to_dict(self) -> dict:
        data = asdict(self)
        data["available_balance"] = self.available_balance
        return data


def calculate_fee(amount: int) -> int:
    """Consignment fee for a withdrawal, rounded half-up to whole rupiah."""
    fee = (Decimal(int(amount)) * FEE_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(fee)


def split_withdrawal(amount: int) -> tuple[int, int]:
    """Return (fee, net) for a requested amount."""
    fee = calculate_fee(amount)
    return fee, int(amount) - fee


def compute_balance(seller_id: int, transactions: Iterable, withdrawals: Iterable) -> SellerBalance:
    """
    Pure balance computation over a seller's history.

    Records belonging to other sellers are ignored, so callers may pass
    unfiltered lists.
    """
    total_sales = sum(
        t.total_amount for t in transactions
        if t.seller_id == seller_id and t.status == TRANSACTION_VERIFIED
    )

    total_withdrawn = 0
    pending_hold = 0
    for w in withdrawals:
        if w.seller_id != seller_id:
            continue
        if w.status == WITHDRAWAL_COMPLETED:
            total_withdrawn += w.amount
        elif w.status == WITHDRAWAL_PENDING:
            pending_hold += w.amount

    return SellerBalance(
        total_sales=total_sales,
        total_withdrawn=total_withdrawn,
        pending_hold=pending_hold,
    )


def validate_withdrawal_amount(amount: int, available_balance: int) -> None:
    """
    Raises BelowMinimumError when amount < MIN_WITHDRAWAL (the minimum itself
    is allowed) and InsufficientBalanceError when amount > available_balance.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise WithdrawalError("Withdrawal amount must be a whole number")

    if amount < MIN_WITHDRAWAL:
        raise BelowMinimumError(
            f"Minimum withdrawal is {MIN_WITHDRAWAL}",
            details={"requested": amount, "minimum": MIN_WITHDRAWAL},
        )

    if amount > available_balance:
        raise InsufficientBalanceError(
            "Insufficient balance",
            details={"requested": amount, "available_balance": available_balance},
        )


def get_seller_balance(seller_id: int) -> SellerBalance:
    return compute_balance(
        seller_id,
        ledger_service.list_transactions(seller_id=seller_id),
        ledger_service.list_withdrawals(seller_id=seller_id),
    )


def get_seller_stats(seller_id: int) -> dict:
    """Numbers shown on the seller dashboard."""
    transactions = ledger_service.list_transactions(seller_id=seller_id)
    withdrawals = ledger_service.list_withdrawals(seller_id=seller_id)
    products = catalog_service.list_by_seller(seller_id)
    balance = compute_balance(seller_id, transactions, withdrawals)

    return {
        "total_revenue": balance.total_sales,
        "total_transactions": sum(1 for t in transactions if t.status == TRANSACTION_VERIFIED),
        "total_products": len(products),
        "active_products": sum(1 for p in products if p.is_active),
        "pending_withdrawals": balance.pending_hold,
        "total_withdrawn": balance.total_withdrawn,
        "available_balance": balance.available_balance,
    }


# =============================================================================
# WITHDRAWAL LIFECYCLE
# =============================================================================

def request_withdrawal(
    seller_id: int,
    amount: int,
    *,
    bank_name: str,
    account_number: str,
    account_name: str,
) -> Withdrawal:
    """
    Create a pending withdrawal for a seller.

    Validation runs before anything is written. The seller row is locked for
    the duration so two concurrent requests cannot both spend the same balance
    on databases that honor FOR UPDATE.
    """
    bank_fields = {
        "bank_name": (bank_name or "").strip(),
        "account_number": (account_number or "").strip(),
        "account_name": (account_name or "").strip(),
    }
    missing = [k for k, v in bank_fields.items() if not v]
    if missing:
        raise WithdrawalError("Bank details are required", details={"missing": missing})

    with atomic():
        seller = lock_for_update(db.session.query(User).filter_by(id=seller_id)).first()
        if seller is None:
            raise WithdrawalError(f"Seller {seller_id} not found")

        balance = get_seller_balance(seller_id)
        validate_withdrawal_amount(amount, balance.available_balance)

        fee, net = split_withdrawal(amount)
        withdrawal = Withdrawal(
            seller_id=seller_id,
            amount=amount,
            fee_amount=fee,
            net_amount=net,
            status=WITHDRAWAL_PENDING,
            requested_at=utcnow(),
            **bank_fields,
        )
        ledger_service.create_withdrawal(withdrawal, commit=False)

    logger.info("Withdrawal %s requested by seller %s: amount=%s fee=%s", withdrawal.id, seller_id, amount, fee)
    return withdrawal


def _pending_withdrawal(withdrawal_id: int) -> Withdrawal:
    withdrawal = ledger_service.get_withdrawal(withdrawal_id)
    if withdrawal is None:
        raise WithdrawalError(f"Withdrawal {withdrawal_id} not found")
    if withdrawal.status != WITHDRAWAL_PENDING:
        raise WithdrawalStateError(f"Cannot process withdrawal with status {withdrawal.status}")
    return withdrawal


def approve_withdrawal(
    withdrawal_id: int,
    *,
    transfer_proof_url: str,
    processed_by_user_id: int | None = None,
    admin_notes: str | None = None,
) -> Withdrawal:
    """Mark a pending withdrawal as paid out. A transfer proof is mandatory."""
    if not (transfer_proof_url or "").strip():
        raise WithdrawalError("Transfer proof is required to approve a withdrawal")

    _pending_withdrawal(withdrawal_id)
    withdrawal = ledger_service.update_withdrawal(
        withdrawal_id,
        {
            "status": WITHDRAWAL_COMPLETED,
            "transfer_proof_url": transfer_proof_url.strip(),
            "admin_notes": admin_notes,
            "processed_at": utcnow(),
            "processed_by_user_id": processed_by_user_id,
        },
    )
    logger.info("Withdrawal %s completed by user %s", withdrawal_id, processed_by_user_id)
    return withdrawal


def reject_withdrawal(
    withdrawal_id: int,
    *,
    processed_by_user_id: int | None = None,
    admin_notes: str | None = None,
) -> Withdrawal:
    """Reject a pending withdrawal; its amount returns to the available balance."""
    _pending_withdrawal(withdrawal_id)
    withdrawal = ledger_service.update_withdrawal(
        withdrawal_id,
        {
            "status": WITHDRAWAL_REJECTED,
            "admin_notes": admin_notes,
            "processed_at": utcnow(),
            "processed_by_user_id": processed_by_user_id,
        },
    )
    logger.info("Withdrawal %s rejected by user %s", withdrawal_id, processed_by_user_id)
    return withdrawal
