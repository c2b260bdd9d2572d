"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database (foreign keys on). The schema
is created from the ORM metadata before every test and dropped after it, so
nothing leaks between tests.
"""
import os
import sys
from uuid import uuid4

# Must be set before core.config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import pytest  # noqa: E402

import models  # noqa: E402,F401  (registers every table on Base.metadata)
from core.database import Base, SessionLocal, engine  # noqa: E402
from task_sync_helpers import Factory  # noqa: E402


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def user_id():
    return uuid4()
