from __future__ import annotations

import logging

from app.config import Settings
from app.repository import InMemoryRepository, SQLRepository, build_repository


def test_memory_backend_is_selected_explicitly():
    settings = Settings(storage_backend="memory")

    assert isinstance(build_repository(settings), InMemoryRepository)


def test_sql_backend_uses_the_configured_url():
    settings = Settings(storage_backend="sql", database_url_override="sqlite+pysqlite:///:memory:")

    assert isinstance(build_repository(settings), SQLRepository)


def test_unreachable_database_falls_back_to_memory(tmp_path, caplog):
    missing = tmp_path / "no-such-dir" / "parley.db"
    settings = Settings(storage_backend="sql", database_url_override=f"sqlite+pysqlite:///{missing}")

    with caplog.at_level(logging.WARNING, logger="app.repository"):
        repository = build_repository(settings)

    assert isinstance(repository, InMemoryRepository)
    assert any("falling back" in record.getMessage() for record in caplog.records)


def test_database_url_is_assembled_from_parts(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DB_USER", "chat")
    monkeypatch.setenv("DB_PASSWORD", "pw")
    monkeypatch.setenv("DB_HOST", "mysql.internal")
    monkeypatch.setenv("DB_PORT", "3307")
    monkeypatch.setenv("DB_NAME", "parley_test")

    settings = Settings()

    assert settings.database_url == "mysql+pymysql://chat:pw@mysql.internal:3307/parley_test"


def test_cors_origins_accept_comma_separated_values(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "http://a.example, http://b.example")

    settings = Settings()

    assert [str(origin).rstrip("/") for origin in settings.cors_origins] == [
        "http://a.example",
        "http://b.example",
    ]
