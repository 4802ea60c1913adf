from __future__ import annotations

from ..extensions import db
from kantin.time_utils import to_utc_z

CUSTOMER_NAME_MAX_LENGTH = 255

TRANSACTION_PENDING = "pending"
TRANSACTION_VERIFIED = "verified"
TRANSACTION_FAILED = "failed"
TRANSACTION_CANCELLED = "cancelled"

TRANSACTION_STATUSES = (
    TRANSACTION_PENDING,
    TRANSACTION_VERIFIED,
    TRANSACTION_FAILED,
    TRANSACTION_CANCELLED,
)

WITHDRAWAL_PENDING = "pending"
WITHDRAWAL_APPROVED = "approved"
WITHDRAWAL_REJECTED = "rejected"
WITHDRAWAL_COMPLETED = "completed"

WITHDRAWAL_STATUSES = (
    WITHDRAWAL_PENDING,
    WITHDRAWAL_APPROVED,
    WITHDRAWAL_REJECTED,
    WITHDRAWAL_COMPLETED,
)


class Transaction(db.Model):
    """
    A verified kiosk purchase.

    Created only after the payment proof is accepted. Line items are
    snapshots taken at purchase time and do not follow later product edits.

    seller_id is the seller of the first cart line (mixed-seller carts are
    attributed entirely to that seller).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_seller_status", "seller_id", "status"),
        db.Index("ix_transactions_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(CUSTOMER_NAME_MAX_LENGTH), nullable=False)

    total_amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TRANSACTION_PENDING, index=True)

    payment_proof_url = db.Column(db.Text, nullable=True)
    verification_notes = db.Column(db.String(255), nullable=True)
    verification_attempts = db.Column(db.Integer, nullable=False, default=1)

    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "TransactionItem",
        backref="transaction",
        lazy=True,
        order_by="TransactionItem.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_proof: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_name": self.customer_name,
            "items": [item.to_dict() for item in self.items],
            "total_amount": self.total_amount,
            "status": self.status,
            "verification_notes": self.verification_notes,
            "verification_attempts": self.verification_attempts,
            "seller_id": self.seller_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_proof:
            data["payment_proof_url"] = self.payment_proof_url
        return data


class TransactionItem(db.Model):
    """Line item snapshot (name and unit price as sold)."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    # No FK: the snapshot outlives product deletion
    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Integer, nullable=False)
    subtotal = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": self.price,
            "subtotal": self.subtotal,
        }


class Withdrawal(db.Model):
    """
    Seller payout request.

    amount is what the seller asked for and what is debited from the
    balance; fee_amount is the consignment fee; net_amount = amount - fee.
    """
    __tablename__ = "withdrawals"
    __table_args__ = (
        db.CheckConstraint("net_amount + fee_amount = amount", name="ck_withdrawals_split"),
        db.Index("ix_withdrawals_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Integer, nullable=False)
    fee_amount = db.Column(db.Integer, nullable=False)
    net_amount = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=WITHDRAWAL_PENDING, index=True)

    bank_name = db.Column(db.String(128), nullable=True)
    account_number = db.Column(db.String(64), nullable=True)
    account_name = db.Column(db.String(255), nullable=True)

    transfer_proof_url = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.String(255), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    seller = db.relationship("User", foreign_keys=[seller_id], backref=db.backref("withdrawals", lazy=True))
    processed_by = db.relationship("User", foreign_keys=[processed_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "seller_name": self.seller.full_name if self.seller else None,
            "amount": self.amount,
            "fee_amount": self.fee_amount,
            "net_amount": self.net_amount,
            "status": self.status,
            "bank_name": self.bank_name,
            "account_number": self.account_number,
            "account_name": self.account_name,
            "transfer_proof_url": self.transfer_proof_url,
            "admin_notes": self.admin_notes,
            "processed_by_user_id": self.processed_by_user_id,
            "requested_at": to_utc_z(self.requested_at),
            "processed_at": to_utc_z(self.processed_at) if self.processed_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
