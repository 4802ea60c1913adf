# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

Staff log in with their NIK (employee number) and a password. Passwords are
bcrypt hashed; plaintext is never stored or compared.

SECURITY NOTES:
- authenticate() returns None for both "unknown NIK" and "wrong password"
  so callers cannot tell which one happened.
- Minimum password length is 6 characters.
"""

import bcrypt
from sqlalchemy import or_

from ..extensions import db
from ..models import User, Product, Transaction, Withdrawal
from ..models.auth import ROLE_ADMIN, ROLE_SELLER, VALID_ROLES
from kantin.time_utils import utcnow

MIN_PASSWORD_LENGTH = 6

SELLER_MUTABLE_FIELDS = {"full_name", "email", "nik", "department", "phone", "is_active"}

# Verified against when the NIK is unknown so both failure paths cost a bcrypt check
_DUMMY_HASH = bcrypt.hashpw(b"kantin-dummy-password", bcrypt.gensalt(rounds=4)).decode("utf-8")


class PasswordValidationError(Exception):
    """Raised when a password doesn't meet requirements."""
    pass


class AccountError(Exception):
    """Raised for user account operation errors."""
    pass


def validate_password_strength(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated before hashing."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def get_user(user_id: int) -> User | None:
    return db.session.get(User, user_id)


def get_user_by_nik(nik: str) -> User | None:
    return db.session.query(User).filter_by(nik=(nik or "").strip()).first()


def authenticate(nik: str, password: str) -> User | None:
    """
    Return the active user matching the NIK and password, else None.

    Updates last_login_at on success.
    """
    user = get_user_by_nik(nik)
    if user is None or not user.is_active:
        verify_password(password or "", _DUMMY_HASH)
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def check_user_password(user_id: int, password: str) -> bool:
    user = get_user(user_id)
    return bool(user) and verify_password(password, user.password_hash)


def set_password(user_id: int, new_password: str) -> User:
    user = get_user(user_id)
    if user is None:
        raise AccountError(f"User {user_id} not found")
    user.password_hash = hash_password(new_password)
    db.session.commit()
    return user


def change_password(user_id: int, current_password: str, new_password: str, confirm_password: str) -> User:
    """Self-service password change; the current password must be supplied."""
    if not current_password or not new_password or not confirm_password:
        raise PasswordValidationError("All password fields are required")
    if new_password != confirm_password:
        raise PasswordValidationError("New password and confirmation do not match")
    validate_password_strength(new_password)
    if not check_user_password(user_id, current_password):
        raise PasswordValidationError("Current password is incorrect")
    return set_password(user_id, new_password)


def create_user(
    *,
    full_name: str,
    nik: str,
    password: str,
    role: str = ROLE_SELLER,
    email: str | None = None,
    department: str | None = None,
    phone: str | None = None,
) -> User:
    """
    Create a staff account.

    Raises AccountError for a missing name/NIK, an unknown role or a NIK that
    is already taken; PasswordValidationError for a weak password.
    """
    full_name = (full_name or "").strip()
    nik = (nik or "").strip()
    if not full_name or not nik:
        raise AccountError("Full name and NIK are required")
    if role not in VALID_ROLES:
        raise AccountError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")
    if get_user_by_nik(nik):
        raise AccountError(f"NIK '{nik}' is already registered")

    user = User(
        full_name=full_name,
        nik=nik,
        email=(email or "").strip() or None,
        department=department,
        phone=phone,
        role=role,
        password_hash=hash_password(password),
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def list_sellers(search: str | None = None) -> list[User]:
    query = db.session.query(User).filter_by(role=ROLE_SELLER)
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(db.func.lower(User.full_name).like(pattern), User.nik.like(pattern))
        )
    return query.order_by(User.full_name.asc(), User.id.asc()).all()


def _seller(user_id: int) -> User:
    user = get_user(user_id)
    if user is None or user.role != ROLE_SELLER:
        raise AccountError(f"Seller {user_id} not found")
    return user


def update_seller(user_id: int, patch: dict) -> User:
    user = _seller(user_id)
    if "nik" in patch:
        nik = (patch["nik"] or "").strip()
        if not nik:
            raise AccountError("NIK is required")
        existing = get_user_by_nik(nik)
        if existing and existing.id != user.id:
            raise AccountError(f"NIK '{nik}' is already registered")
        patch = {**patch, "nik": nik}
    for k, v in patch.items():
        if k in SELLER_MUTABLE_FIELDS:
            setattr(user, k, v)
    db.session.commit()
    return user


def delete_seller(user_id: int) -> None:
    """
    Remove a seller account.

    Sellers with ledger history are deactivated instead so transactions and
    withdrawals keep their owner.
    """
    user = _seller(user_id)
    has_history = (
        db.session.query(Transaction.id).filter_by(seller_id=user.id).first()
        or db.session.query(Withdrawal.id).filter_by(seller_id=user.id).first()
    )
    if has_history:
        user.is_active = False
        db.session.query(Product).filter_by(seller_id=user.id).update({"is_active": False})
    else:
        db.session.query(Product).filter_by(seller_id=user.id).delete()
        db.session.delete(user)
    db.session.commit()


def ensure_admin(nik: str, password: str, full_name: str = "Administrator") -> tuple[User, bool]:
    """Create the admin account if the NIK is free. Returns (user, created)."""
    existing = get_user_by_nik(nik)
    if existing:
        return existing, False
    user = create_user(full_name=full_name, nik=nik, password=password, role=ROLE_ADMIN)
    return user, True
