from __future__ import annotations

from ..extensions import db
from kantin.time_utils import to_utc_z
from .ledger import CUSTOMER_NAME_MAX_LENGTH

FAILURE_REASON_MAX_LENGTH = 512


class FailedValidation(db.Model):
    """
    Append-only log of rejected payment proofs.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "failed_validations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(CUSTOMER_NAME_MAX_LENGTH), nullable=False)
    attempted_amount = db.Column(db.Integer, nullable=False)
    failure_reason = db.Column(db.String(FAILURE_REASON_MAX_LENGTH), nullable=False)
    image_url = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self, include_image: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_name": self.customer_name,
            "attempted_amount": self.attempted_amount,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
        }
        if include_image:
            data["image_url"] = self.image_url
        return data
