"""Tests for backend wiring and database helpers."""

import pytest
from sqlalchemy import inspect

from pagepilot import db_helpers
from pagepilot.backend import ActionBackend, build_default_backend
from pagepilot.config import PilotSettings
from pagepilot.entities import Base


def test_database_url_wins(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'x.db'}")

    factory = db_helpers.create_session_factory()

    assert factory.kw["bind"].dialect.name == "sqlite"
    factory.kw["bind"].dispose()


def test_db_password_from_env(monkeypatch):
    monkeypatch.setattr(db_helpers, "DB_PASSWORD", "s3cret")
    assert db_helpers.get_db_password() == "s3cret"


def test_db_password_missing(monkeypatch):
    monkeypatch.setattr(db_helpers, "DB_PASSWORD", None)
    monkeypatch.setattr(db_helpers, "DB_SECRET_ID", None)
    with pytest.raises(RuntimeError):
        db_helpers.get_db_password()


def test_build_default_backend_shares_one_scheduler(monkeypatch, session_factory):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    settings = PilotSettings(reservoir_tokens=5_000, max_concurrent_calls=1)

    backend = build_default_backend(settings, session_factory=session_factory)

    assert isinstance(backend, ActionBackend)
    assert backend.action_llm.scheduler is backend.scheduler
    assert backend.research_llm.scheduler is backend.scheduler
    assert backend.research_llm is not backend.action_llm
    assert set(backend.resolvers) == {
        "navigation", "click", "highlight", "fillForm", "research-analyze", "research-organize",
    }
    health = backend.health()
    assert health["scheduler"]["capacity"] == 5_000
    assert health["scheduler"]["max_concurrent"] == 1
    assert health["models"] == {"action": "gpt-5-mini", "research": "gpt-5-nano"}


def test_build_default_backend_creates_tables(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'fresh.db'}")

    backend = build_default_backend(PilotSettings())

    engine = backend.ledger.SessionFactory.kw["bind"]
    assert set(Base.metadata.tables) <= set(inspect(engine).get_table_names())
    engine.dispose()


def test_record_feedback_requires_conversation(backend):
    from pagepilot.errors import ActionValidationError

    with pytest.raises(ActionValidationError):
        backend.record_feedback("  ", "good")
