"""Shared pytest fixtures for the Reflecto tests."""

import itertools

import pytest
from fastapi.testclient import TestClient

from reflecto.config import Settings
from reflecto.main import create_app
from reflecto.services import Reflecto

_counter = itertools.count(1)


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway database, ignoring any local .env."""
    return Settings(
        _env_file=None,
        database_path=str(tmp_path / "reflecto-test.db"),
        auth_secret="test-secret",
    )


@pytest.fixture
def reflecto(settings):
    """Service facade over the temporary database."""
    return Reflecto(settings)


@pytest.fixture
def make_user(reflecto):
    """Factory that registers and logs in a user.

    Usage:
        def test_example(make_user):
            identity, token = make_user()
    """

    def _create(email=None, password="secret123"):
        email = email or f"user{next(_counter)}@example.com"
        reflecto.auth.register(email, password)
        token = reflecto.auth.login(email, password)
        return reflecto.auth.resolve_identity(token), token

    return _create


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(client):
    """Factory that registers a user over HTTP and returns its Authorization headers."""

    def _create(email=None, password="secret123"):
        email = email or f"http{next(_counter)}@example.com"
        response = client.post("/register", json={"email": email, "password": password})
        assert response.status_code == 201, response.text
        response = client.post("/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _create
