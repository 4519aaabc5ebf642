"""
Pytest fixtures for stockledger backend tests.

Provides test database setup, users with API tokens, catalog fixtures and
a test client.
"""

from decimal import Decimal

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Category, ExpenseCategory, Supplier
from stockledger.services import auth_service, catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'CORS_ALLOWED_ORIGINS': ['http://localhost:5173'],
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

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def user(db_session):
    """Active user; services receive user.id as the actor."""
    return auth_service.create_user(name="Store Admin", email="admin@example.com", password="Password123")


@pytest.fixture(scope='function')
def token(user):
    _, plaintext = auth_service.issue_api_token(user, name="tests")
    return plaintext


@pytest.fixture(scope='function')
def headers(token):
    return auth_headers(token)


@pytest.fixture(scope='function')
def category(db_session):
    category = Category(name="Apparel", description="Second-hand clothing", is_active=True)
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(name="Bale Traders Ltd", contact="0700000000", email="sales@baletraders.test")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def transport_category(db_session):
    category = ExpenseCategory(name="Transport", is_active=True)
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def make_product(db_session, category, user):
    """
    Factory: make_product(stock=5, name="Jeans") creates a product through the
    catalog service, so opening stock is recorded as a movement.
    """
    counter = {"n": 0}

    def _make(stock: int = 0, name: str | None = None, cost_price="2.00", selling_price="5.00"):
        counter["n"] += 1
        return catalog_service.create_product(
            patch={
                "name": name or f"Product {counter['n']}",
                "category_id": category.id,
                "cost_price": Decimal(cost_price),
                "selling_price": Decimal(selling_price),
                "stock": stock,
            },
            actor_id=user.id,
        )

    return _make


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
