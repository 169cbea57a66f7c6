"""
Pytest fixtures for tabkeeper backend tests.

Provides the application against in-memory SQLite, per-test table cleanup,
a small catalog and a couple of customer accounts.
"""

import pytest

from tabkeeper import create_app
from tabkeeper.extensions import db
from tabkeeper.services import account_service, stock_service


ACTOR = "clerk-1"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_COMMIT_BACKOFF': 0,
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
def actor_headers():
    return {"X-Actor-Id": ACTOR, "X-Actor-Name": "Front counter"}


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


@pytest.fixture(scope='function')
def items(db_session):
    """A: 5 units at 50.00, B: 3 units at 20.00."""
    return {
        "A": stock_service.register_item(item_id="A", name="Notebook", quantity=5, selling_price_cents=5000, min_stock=2),
        "B": stock_service.register_item(item_id="B", name="Pen", quantity=3, selling_price_cents=2000, min_stock=5),
    }


@pytest.fixture(scope='function')
def customer(db_session):
    return account_service.open_account("c1", "Customer One")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return account_service.open_account("c2", "Customer Two")
