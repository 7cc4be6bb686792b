"""
Pytest fixtures for shelfpos backend tests.

Provides test database setup, accounts, products and an authenticated test client.
"""

import pytest
from shelfpos import create_app
from shelfpos.extensions import db
from shelfpos.models import User, Product
from shelfpos.models.auth import ROLE_ADMIN, ROLE_USER
from shelfpos.services.auth_service import hash_password
from shelfpos.services.products_service import derive_status

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'POS_CURRENCY': 'PHP',
        'LOG_LEVEL': 'DEBUG',
    })

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

        db.session.rollback()


def _make_user(db_session, username: str, role: str = ROLE_USER) -> User:
    user = User(
        username=username,
        email=f"{username}@shop.local",
        password_hash=hash_password(PASSWORD, rounds=4),
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session):
    """Store owner who rings up checkouts."""
    return _make_user(db_session, "owner")


@pytest.fixture(scope='function')
def other_owner(db_session):
    """A second account; must never see or sell owner's products."""
    return _make_user(db_session, "other")


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin", role=ROLE_ADMIN)


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(owner, quantity=5, price_cents=1000, ...)."""
    def _make(owner, *, name="Product", quantity=5, price_cents=1000, category="FOOD", status=None):
        product = Product(
            owner_id=owner.id,
            name=name,
            description=f"{name} description",
            category=category,
            quantity=quantity,
            price_cents=price_cents,
            status=status or derive_status(quantity),
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def reload(db_session):
    """reload(Model, pk): fresh copy of a row after a request changed it."""
    def _reload(model, pk):
        db_session.expire_all()
        return db_session.get(model, pk)
    return _reload


def login(client, username: str, password: str = PASSWORD) -> str:
    response = client.post('/api/auth/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()['token']


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(client, owner):
    return auth_headers(login(client, owner.username))


@pytest.fixture(scope='function')
def other_headers(client, other_owner):
    return auth_headers(login(client, other_owner.username))


@pytest.fixture(scope='function')
def admin_headers(client, admin):
    return auth_headers(login(client, admin.username))
