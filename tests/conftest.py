"""
Test configuration and fixtures for the Opsboard API.

Every test gets a fresh in-memory SQLite database shared across threads
(StaticPool), bound to the app through the get_db dependency override.
"""
import os

# Settings are read at import time, so the environment has to be ready first
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ.pop("DVLA_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from opsboard.db import Base, get_db
from opsboard.main import app
from opsboard.auth.permissions import seed_default_roles
from opsboard.auth.security import create_access_token, get_password_hash
from opsboard.models.models import Employee, Role, User

TEST_PASSWORD = "secret-pass-123"


@pytest.fixture
def engine():
    """Create a fresh in-memory database for one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory):
    """Session for arranging and inspecting data directly."""
    session = session_factory()
    seed_default_roles(session)
    yield session
    session.close()


@pytest.fixture
def client(session_factory, db_session):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """Factory: create a user with the given roles and return it."""
    def _make(username: str, roles=(), is_active: bool = True, permissions_override=None) -> User:
        user = User(
            username=username,
            email=f"{username}@example.com",
            display_name=username.title(),
            password_hash=get_password_hash(TEST_PASSWORD),
            is_active=is_active,
            permissions_override=permissions_override,
        )
        user.roles = db_session.query(Role).filter(Role.name.in_(list(roles))).all()
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def headers_for(user: User) -> dict:
    token = create_access_token(str(user.id), roles=[r.name for r in user.roles])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(make_user):
    return make_user("admin", roles=["admin"])


@pytest.fixture
def admin_headers(admin):
    return headers_for(admin)


@pytest.fixture
def crew(db_session):
    """Three active crew members."""
    people = [
        Employee(name="Alice Driver", code="AD01", job_titles=["Driver"], work_pattern="full_time"),
        Employee(name="Bob Tracker", code="BT02", job_titles=["Precision Driver"], work_pattern="full_time"),
        Employee(name="Cara Free", code="CF03", job_titles=["Freelancer"], work_pattern="three_days"),
    ]
    db_session.add_all(people)
    db_session.commit()
    return people


@pytest.fixture
def auth_headers():
    """Bearer headers for any user."""
    return headers_for


@pytest.fixture
def password():
    """Plain-text password of every user made by make_user."""
    return TEST_PASSWORD
