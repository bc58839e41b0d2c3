"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.config import get_settings
from app.database import build_engine, build_session_factory, init_schema
from app.main import app
from app.models import Base
from app.repository import InMemoryRepository, MessengerRepository, SQLRepository
from parley.realtime import RealtimeServices, build_realtime, install_services


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = build_engine("sqlite+pysqlite:///:memory:")
    init_schema(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return build_session_factory(test_engine)


@pytest.fixture(params=["sql", "memory"])
def repository(request, session_factory) -> MessengerRepository:
    """Every repository implementation; tests using it run once per backend."""

    if request.param == "sql":
        return SQLRepository(session_factory)
    return InMemoryRepository()


@pytest.fixture()
def services(repository) -> RealtimeServices:
    return build_realtime(repository, get_settings())


@pytest.fixture()
def client(services) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient wired to the test repository."""

    install_services(app.state, services)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.realtime = None
        app.state.repository = None


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def make_user(client: TestClient) -> Callable[..., tuple[dict[str, Any], dict[str, str]]]:
    """Register and log in a user, returning its wire payload and auth headers."""

    def _make_user(username: str, password: str = "secret-pass", display_name: str | None = None):
        response = client.post(
            "/api/auth/register",
            json={
                "username": username,
                "password": password,
                "displayName": display_name or username.title(),
            },
        )
        assert response.status_code == 201, response.text
        login = client.post("/api/auth/login", json={"username": username, "password": password})
        assert login.status_code == 200, login.text
        return response.json(), auth_headers(login.json()["accessToken"])

    return _make_user
