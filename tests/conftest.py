"""Pytest fixtures and configuration for minitask tests."""

import os

# Configure before any minitask module reads the environment.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from minitask.auth.jwt import create_access_token
from minitask.auth.passwords import hash_password
from minitask.database.database import Base, get_db
from minitask.database.idempotency_repository import IdempotencyRepository
from minitask.database.repository import TaskRepository
from minitask.database.user_repository import UserRepository
from minitask.models.user import CallerIdentity, User, UserRole


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_PASSWORD = "correct horse battery"


@pytest.fixture(scope="function")
def db_session():
    """Create a database session for testing.

    Uses an in-memory SQLite database that is created fresh for each test.
    Foreign keys are switched on by the connect listener in
    minitask.database.database, since DATABASE_URL is SQLite here.
    """
    from minitask.database import models  # noqa: F401

    # Create engine with StaticPool for in-memory database
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def task_repository(db_session: Session):
    """Create a TaskRepository instance for testing."""
    return TaskRepository(db_session)


@pytest.fixture
def user_repository(db_session: Session):
    return UserRepository(db_session)


@pytest.fixture
def idempotency_repository(db_session: Session):
    return IdempotencyRepository(db_session)


@pytest.fixture(scope="session")
def password_hash():
    """One bcrypt hash shared by every seeded user (hashing is slow on purpose)."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def make_user(user_repository, password_hash):
    """Factory for persisted users."""

    def _make(email, role=UserRole.USER, is_premium=False, subscription_expiry=None, name=None) -> User:
        return user_repository.create(
            email=email,
            password_hash=password_hash,
            name=name,
            role=role,
            is_premium=is_premium,
            subscription_expiry=subscription_expiry,
        )

    return _make


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", name="Owner")


@pytest.fixture
def other_user(make_user):
    return make_user("other@example.com", name="Other")


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", role=UserRole.ADMIN, name="Admin")


@pytest.fixture
def premium_user(make_user):
    """Premium holder whose subscription runs for another month."""
    return make_user(
        "premium@example.com",
        is_premium=True,
        subscription_expiry=datetime.utcnow() + timedelta(days=30),
    )


@pytest.fixture
def lapsed_premium_user(make_user):
    """Premium flag still set, but the subscription ended yesterday."""
    return make_user(
        "lapsed@example.com",
        is_premium=True,
        subscription_expiry=datetime.utcnow() - timedelta(days=1),
    )


@pytest.fixture
def identity_of():
    """Build the CallerIdentity a request by `user` would resolve to."""
    return CallerIdentity.from_user


@pytest.fixture
def auth_headers():
    """Bearer header for a real access token issued to `user`."""

    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    return _headers


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Rate-limit counters are process-wide; start every test from zero."""
    from minitask.auth.dependencies import rate_limiter

    rate_limiter.reset()
    yield
    rate_limiter.reset()


@pytest.fixture
def test_client(db_session: Session):
    """Create a FastAPI test client with overridden database dependency."""
    from minitask.api.app import app

    # Override the get_db dependency to use our test database session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db

    # Not used as a context manager: the lifespan hook would initialize the
    # module-level engine, which tests never touch.
    client = TestClient(app)
    yield client

    # Clean up dependency overrides
    app.dependency_overrides.clear()


@pytest.fixture
def test_password():
    """Plain-text password of every seeded user."""
    return TEST_PASSWORD
