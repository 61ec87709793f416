"""
Test configuration and fixtures for the ZK Vault server tests.
"""
import os

# Must be set before zkvault.core.config is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SQL_DEBUG"] = "false"
os.environ["PENDING_STORE_BACKEND"] = "memory"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from zkvault.main import app
from zkvault.db.database import get_db
from zkvault.db.models import Base
from zkvault.core.pending_store import pending_store
from zkvault.client.srp_client import SrpClientLogin, build_registration


@pytest.fixture(scope="session")
def test_db_url():
    """Create a test database URL using SQLite in memory."""
    return "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db_engine(test_db_url):
    """Create a test database engine for each test function."""
    engine = create_engine(
        test_db_url,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False  # Set to True for SQL debugging
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_db_session(test_db_engine):
    """Create a test database session for each test function."""
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_db_engine
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(test_db_session):
    """Create a test client with isolated database session."""
    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    original_overrides = app.dependency_overrides.copy()
    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides = original_overrides


@pytest.fixture(autouse=True)
def clear_pending_store():
    """Handshakes and 2FA logins must not leak between tests."""
    pending_store.clear()
    yield
    pending_store.clear()


@pytest.fixture
def register(client):
    """Register an account through the API and return its session token."""
    def _register(username: str, password: str) -> str:
        response = client.post("/auth/register", json={"username": username, **build_registration(username, password)})
        assert response.status_code == 200, response.text
        return response.json()["token"]
    return _register


@pytest.fixture
def srp_login(client):
    """Run challenge + login; returns (login response, SrpClientLogin)."""
    def _login(username: str, password: str):
        challenge = client.post("/auth/srp-challenge", json={"username": username})
        assert challenge.status_code == 200, challenge.text
        body = challenge.json()
        srp = SrpClientLogin(username, password)
        client_public_key, client_proof = srp.respond(body["salt"], body["server_public_key"])
        response = client.post("/auth/login", json={
            "username": username,
            "client_public_key": client_public_key,
            "client_proof": client_proof,
        })
        return response, srp
    return _login


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_headers
