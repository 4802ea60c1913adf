"""
Pytest fixtures for kantin backend tests.

Provides an in-memory database, test client, seeded accounts and products.
"""

import pytest

from kantin import create_app
from kantin.config import TestConfig
from kantin.extensions import db
from kantin.models import User, Product, QRISConfig
from kantin.models.auth import ROLE_ADMIN, ROLE_SELLER
from kantin.services.auth_service import hash_password

# Cheap bcrypt cost keeps fixture setup fast
TEST_BCRYPT_ROUNDS = 4
SELLER_PASSWORD = "rahasia123"
ADMIN_PASSWORD = "admin-rahasia"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, *, nik, full_name, role, password):
    user = User(
        full_name=full_name,
        nik=nik,
        role=role,
        password_hash=hash_password(password, rounds=TEST_BCRYPT_ROUNDS),
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, nik="0001", full_name="Admin Kantin", role=ROLE_ADMIN, password=ADMIN_PASSWORD)


@pytest.fixture(scope='function')
def seller(db_session):
    return _make_user(db_session, nik="1001", full_name="Bu Sri", role=ROLE_SELLER, password=SELLER_PASSWORD)


@pytest.fixture(scope='function')
def other_seller(db_session):
    return _make_user(db_session, nik="1002", full_name="Pak Budi", role=ROLE_SELLER, password=SELLER_PASSWORD)


@pytest.fixture(scope='function')
def qris(db_session):
    config = QRISConfig(image_url="https://example.test/qris.png", merchant_name="SPS Corner", is_active=True)
    db_session.add(config)
    db_session.commit()
    return config


def make_product(db_session, seller, *, name, price, stock, category="Makanan", is_active=True):
    product = Product(
        seller_id=seller.id,
        name=name,
        price=price,
        stock=stock,
        category=category,
        is_active=is_active,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def nasi_goreng(db_session, seller):
    """Price 15000, stock 3."""
    return make_product(db_session, seller, name="Nasi Goreng", price=15_000, stock=3)


@pytest.fixture(scope='function')
def es_teh(db_session, other_seller):
    """Price 5000, stock 10, owned by the second seller."""
    return make_product(db_session, other_seller, name="Es Teh", price=5_000, stock=10, category="Minuman")


def get_auth_token(client, nik: str, password: str) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'nik': nik,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def seller_headers(client, seller):
    return auth_headers(get_auth_token(client, seller.nik, SELLER_PASSWORD))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.nik, ADMIN_PASSWORD))


@pytest.fixture(scope='function')
def product_factory(db_session):
    """make_product bound to the test session: product_factory(seller, name=..., price=..., stock=...)."""
    def _factory(seller, **kwargs):
        return make_product(db_session, seller, **kwargs)
    return _factory
