"""
Pytest configuration for the Workshop Chat test suite.

Provides:
- an in-memory SQLite engine and session with all tables created
- a fake LLM client that streams canned tokens
- a FastAPI TestClient wired to both through dependency overrides
"""
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from workshop_chat.core.database import Base, KnowledgeEntry, get_db, get_session_maker
from workshop_chat.core.llm_client import CompletionStream, get_llm_client


class FakeLLMClient:
    """Stands in for LLMClient: streams fixed tokens, optionally failing."""

    def __init__(self, tokens=None, error=None, start_error=None):
        self.tokens = ["Hello", ", ", "world"] if tokens is None else tokens
        self.error = error
        self.start_error = start_error
        self.calls: List[Dict[str, Any]] = []

    def stream_chat_completion(self, history, knowledge_context=""):
        self.calls.append(
            {
                "history": [(m.role, m.content) for m in history],
                "knowledge_context": knowledge_context,
            }
        )
        if self.start_error is not None:
            raise self.start_error
        return CompletionStream(self._tokens())

    def _tokens(self):
        for token in self.tokens:
            yield token
        if self.error is not None:
            raise self.error


def parse_sse(body: str) -> List[Dict[str, Any]]:
    """Decode the JSON payloads of an SSE response body."""
    return [
        json.loads(line[len("data:"):].strip())
        for line in body.splitlines()
        if line.startswith("data:")
    ]


def add_entry(db, title, content, contributor="ada", tags=None, age_minutes=0):
    """Insert a knowledge entry directly, optionally back-dated."""
    created = datetime.utcnow() - timedelta(minutes=age_minutes)
    entry = KnowledgeEntry(
        title=title,
        content=content,
        contributor=contributor,
        tags=tags or [],
        created_at=created,
        updated_at=created,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


@pytest.fixture
def engine():
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
def db(engine):
    session = get_session_maker(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def client(engine, llm):
    from apps.web_api.main import app

    SessionLocal = get_session_maker(engine)

    def override_get_db():
        session = SessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_client] = lambda: llm

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a process-wide exit event bound to the first event loop."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
