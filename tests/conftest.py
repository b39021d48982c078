"""Shared test fixtures: throwaway SQLite database and an API client bound to it."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base, get_db, get_session_factory
from app.main import app
from app.schemas.user import UserCreate
from app.services.auth import RequestContext, create_session, create_user


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a fresh file-backed SQLite database."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def test_db(session_factory):
    """A database session for service-level tests."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def ctx(test_db) -> RequestContext:
    """Request context of a freshly registered user."""
    user = create_user(
        test_db, UserCreate(username="owner", email="owner@example.com", password="secret-pass")
    )
    return RequestContext(user=user, session=create_session(test_db, user))


@pytest.fixture
def client(session_factory):
    """Create a test client with database override."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


def register_and_login(client: TestClient, username: str = "alice") -> dict[str, str]:
    """Register a user through the API and return bearer auth headers."""
    password = f"{username}-password"
    response = client.post(
        "/api/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )
    assert response.status_code == 201
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def auth_headers(client) -> dict[str, str]:
    return register_and_login(client)


@pytest.fixture
def login(client):
    """Register and log in additional users: ``login("bob")`` -> headers."""
    return lambda username: register_and_login(client, username)
