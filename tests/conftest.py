"""
Pytest fixtures for range receiver tests.
"""

import os

import pytest

# Set DATABASE_URL BEFORE importing the app to use in-memory SQLite for tests
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['SCHEDULER_ENABLED'] = 'false'
os.environ['FLASK_TESTING'] = 'true'

from range_receiver.app import create_app  # noqa: E402
from range_receiver.database import SessionLocal, engine  # noqa: E402
from range_receiver.models import Base  # noqa: E402
from range_receiver.services.range_estimation_service import RangeEstimationManager  # noqa: E402

from tests.factories import CAPACITY_WH, CELLS  # noqa: E402


@pytest.fixture
def app():
    """Create application for testing."""
    Base.metadata.drop_all(engine)
    flask_app = create_app(start_scheduler=False)
    flask_app.config['TESTING'] = True

    yield flask_app

    SessionLocal.remove()
    Base.metadata.drop_all(engine)


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Provide a database session for tests."""
    session = SessionLocal()
    yield session
    session.rollback()
    SessionLocal.remove()


@pytest.fixture
def range_manager(app):
    """Manager owned by the test app."""
    return app.extensions["range_manager"]


@pytest.fixture
def manager():
    """Standalone manager with the simple linear estimator and no persistence."""
    return RangeEstimationManager(
        battery_capacity_wh=CAPACITY_WH,
        cell_count=CELLS,
        algorithm="simple_linear",
        stale_after_ms=60000,
    )
