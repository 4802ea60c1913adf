from __future__ import annotations

from ..extensions import db
from kantin.time_utils import to_utc_z


class QRISConfig(db.Model):
    """
    The static QRIS code customers scan at the kiosk.

    Singleton in practice: the active row is the one read by every checkout.
    """
    __tablename__ = "qris_configs"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    image_url = db.Column(db.Text, nullable=False)
    merchant_name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "image_url": self.image_url,
            "merchant_name": self.merchant_name,
            "is_active": self.is_active,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
