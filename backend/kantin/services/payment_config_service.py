# Overview: Service-layer operations for the QRIS payment target.

from __future__ import annotations

from ..extensions import db
from ..models import QRISConfig

DEFAULT_QRIS_IMAGE_URL = (
    "https://upload.wikimedia.org/wikipedia/commons/thumb/a/a2/QRIS_logo.svg/1200px-QRIS_logo.svg.png"
)
DEFAULT_MERCHANT_NAME = "SPS Corner"


class PaymentConfigError(Exception):
    """Raised for QRIS configuration errors."""
    pass


def get_config() -> QRISConfig | None:
    """Return the active QRIS config, or None when none has been set up."""
    return (
        db.session.query(QRISConfig)
        .filter_by(is_active=True)
        .order_by(QRISConfig.id.desc())
        .first()
    )


def update_config(patch: dict, updated_by_user_id: int | None = None) -> QRISConfig:
    """
    Replace the QRIS image and/or merchant name.

    Both must be non-empty after the patch is applied. Creates the config row
    if none exists yet.
    """
    config = get_config()
    image_url = patch.get("image_url", config.image_url if config else None)
    merchant_name = patch.get("merchant_name", config.merchant_name if config else None)

    image_url = (image_url or "").strip()
    merchant_name = (merchant_name or "").strip()
    if not image_url or not merchant_name:
        raise PaymentConfigError("QRIS image and merchant name are required")

    if config is None:
        config = QRISConfig(is_active=True)
        db.session.add(config)

    config.image_url = image_url
    config.merchant_name = merchant_name
    config.updated_by_user_id = updated_by_user_id
    db.session.commit()
    return config


def ensure_default_config() -> QRISConfig:
    config = get_config()
    if config is not None:
        return config
    return update_config(
        {"image_url": DEFAULT_QRIS_IMAGE_URL, "merchant_name": DEFAULT_MERCHANT_NAME}
    )
