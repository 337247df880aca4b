"""Basic sanity tests for core functionality."""
import logging

import pytest


def test_imports():
    """Test that core modules can be imported."""
    from workshop_chat.core import config
    from workshop_chat.core import database
    from workshop_chat.core import errors
    from workshop_chat.core import schemas
    from workshop_chat.core import knowledge_repository
    from workshop_chat.core import knowledge_service
    from workshop_chat.core import chat_repository
    from workshop_chat.core import chat_service
    from workshop_chat.core import llm_client
    from workshop_chat.core import sse
    from workshop_chat.core import client

    assert config is not None
    assert database is not None
    assert sse is not None


def test_config_loading():
    """Test configuration loading."""
    from workshop_chat.core.config import get_settings

    settings = get_settings()
    assert settings.database_url is not None
    assert settings.max_context_messages == 50
    assert settings.knowledge_context_limit == 5
    assert settings.fts_config == "english"


def test_prefixed_table_names():
    """Test that the tenant prefix applies only when set."""
    from workshop_chat.core.database import prefixed

    assert prefixed("chat_messages", prefix="") == "chat_messages"
    assert prefixed("chat_messages", prefix="cole") == "cole_chat_messages"


def test_shared_tables_never_prefixed():
    """Test that users and knowledge_entries keep fixed names."""
    from workshop_chat.core.database import KnowledgeEntry, User

    assert User.__tablename__ == "users"
    assert KnowledgeEntry.__tablename__ == "knowledge_entries"


def test_search_vector_ddl():
    """Test the full-text search trigger DDL."""
    from workshop_chat.core.database import search_vector_ddl

    statements = search_vector_ddl("simple")
    joined = "\n".join(statements)

    assert len(statements) == 3
    assert "setweight(to_tsvector('simple', COALESCE(NEW.title, '')), 'A')" in joined
    assert "setweight(to_tsvector('simple', COALESCE(NEW.content, '')), 'B')" in joined
    assert "CREATE TRIGGER trg_knowledge_search_vector" in joined


def test_init_db_sqlite():
    """Test table creation on a non-PostgreSQL engine."""
    from sqlalchemy import create_engine, inspect

    from workshop_chat.core.database import CONVERSATIONS_TABLE, MESSAGES_TABLE, init_db

    engine = create_engine("sqlite://")
    tables = init_db(engine)

    assert "knowledge_entries" in tables
    assert "users" in tables
    assert CONVERSATIONS_TABLE in tables
    assert set(inspect(engine).get_table_names()) >= {MESSAGES_TABLE, "knowledge_entries"}


def test_error_codes():
    """Test error codes and HTTP statuses."""
    from workshop_chat.core.errors import (
        ConversationNotFoundError,
        InvalidMessageRoleError,
        KnowledgeEntryNotFoundError,
    )

    error = ConversationNotFoundError("abc")
    assert error.status_code == 404
    assert error.code == "CONVERSATION_NOT_FOUND"
    assert "abc" in error.message

    assert KnowledgeEntryNotFoundError("x").code == "KNOWLEDGE_ENTRY_NOT_FOUND"
    assert InvalidMessageRoleError("system").status_code == 400


def test_title_generation():
    """Test conversation titles from the first message."""
    from workshop_chat.core.chat_service import DEFAULT_TITLE, generate_title_from_message

    assert generate_title_from_message("short") == "short"
    assert generate_title_from_message("  padded  ") == "padded"
    assert generate_title_from_message("x" * 50) == "x" * 50
    assert generate_title_from_message("y" * 51) == "y" * 50 + "..."
    assert generate_title_from_message("   ") == DEFAULT_TITLE


def test_build_chat_messages():
    """Test system prompt and history assembly."""
    from workshop_chat.core.llm_client import SYSTEM_PROMPT, build_chat_messages

    history = [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]

    messages = build_chat_messages(history)
    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert messages[1:] == history

    messages = build_chat_messages(history, knowledge_context="## Relevant")
    assert messages[0]["content"] == f"{SYSTEM_PROMPT}\n\n## Relevant"


def test_build_chat_messages_keeps_recent():
    """Test that only the most recent messages are sent."""
    from workshop_chat.core.llm_client import build_chat_messages

    history = [{"role": "user", "content": str(i)} for i in range(60)]

    messages = build_chat_messages(history, max_context_messages=50)
    assert len(messages) == 51
    assert messages[1]["content"] == "10"
    assert messages[-1]["content"] == "59"


def test_completion_stream_full_response():
    """Test that the full response resolves once iteration ends."""
    from workshop_chat.core.llm_client import CompletionStream

    closed = []
    stream = CompletionStream(iter(["a", "b", "c"]), on_close=lambda: closed.append(True))

    assert list(stream) == ["a", "b", "c"]
    assert stream.full_response.result(timeout=0) == "abc"
    assert closed == [True]


def test_completion_stream_upstream_error():
    """Test that an upstream failure fails the full response."""
    from workshop_chat.core.llm_client import CompletionStream

    def tokens():
        yield "partial"
        raise ConnectionError("upstream reset")

    stream = CompletionStream(tokens())
    received = []
    with pytest.raises(ConnectionError):
        for token in stream:
            received.append(token)

    assert received == ["partial"]
    assert isinstance(stream.full_response.exception(timeout=0), ConnectionError)


def test_completion_stream_single_use_and_close():
    """Test single consumption and early close."""
    from workshop_chat.core.llm_client import CompletionStream

    closed = []
    stream = CompletionStream(iter(["a"]), on_close=lambda: closed.append(True))
    iter(stream)
    with pytest.raises(RuntimeError):
        iter(stream)

    stream.close()
    stream.close()
    assert stream.full_response.cancelled()
    assert closed == [True]


def test_bind_logger_prefixes_context(caplog):
    """Test request-scoped context on log lines."""
    from workshop_chat.core.logging_config import bind_logger

    logger = logging.getLogger("test_bind_logger")
    log = bind_logger(logger, conversation_id="abc")

    with caplog.at_level(logging.INFO, logger="test_bind_logger"):
        log.info("saved")
        log.bind(role="assistant").info("added")

    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["[conversation_id=abc] saved", "[conversation_id=abc role=assistant] added"]


def test_setup_db_cli(tmp_path, monkeypatch):
    """Test the database setup command against a SQLite file."""
    from sqlalchemy import create_engine, inspect

    from apps.setup_db.main import main
    from workshop_chat.core.config import get_settings
    from workshop_chat.core.database import get_engine

    database_url = f"sqlite:///{tmp_path / 'setup.db'}"
    monkeypatch.setenv("DATABASE_URL", database_url)
    get_settings.cache_clear()
    get_engine.cache_clear()

    try:
        assert main(["--database-url", database_url]) == 0
    finally:
        get_settings.cache_clear()
        get_engine.cache_clear()

    tables = inspect(create_engine(database_url)).get_table_names()
    assert "knowledge_entries" in tables
    assert "users" in tables


def test_setup_db_cli_table_prefix(tmp_path):
    """Test that --table-prefix creates prefixed tenant tables next to the shared ones."""
    import os
    import subprocess
    import sys
    from pathlib import Path

    from sqlalchemy import create_engine, inspect

    root = Path(__file__).resolve().parent.parent
    database_url = f"sqlite:///{tmp_path / 'tenant.db'}"
    env = {k: v for k, v in os.environ.items() if k not in ("TABLE_PREFIX", "DATABASE_URL")}

    result = subprocess.run(
        [sys.executable, "-m", "apps.setup_db.main", "--table-prefix", "cole", "--database-url", database_url],
        cwd=root,
        env=env,
        capture_output=True,
        text=True,
        timeout=120,
    )

    assert result.returncode == 0, result.stdout + result.stderr
    assert "cole_chat_messages" in result.stdout

    tables = set(inspect(create_engine(database_url)).get_table_names())
    assert {"cole_projects", "cole_chat_conversations", "cole_chat_messages"} <= tables
    assert {"users", "knowledge_entries"} <= tables
    assert "chat_messages" not in tables


def test_setup_db_cli_rejects_prefix_after_models_loaded(tmp_path, monkeypatch):
    """Test that a prefix the loaded models cannot honour is refused."""
    from sqlalchemy import create_engine, inspect

    from apps.setup_db.main import main
    from workshop_chat.core.config import get_settings
    from workshop_chat.core.database import get_engine

    database_url = f"sqlite:///{tmp_path / 'late.db'}"
    monkeypatch.setenv("TABLE_PREFIX", "cole")
    monkeypatch.setenv("DATABASE_URL", database_url)
    get_engine.cache_clear()

    try:
        assert main(["--table-prefix", "cole", "--database-url", database_url]) == 2
    finally:
        get_settings.cache_clear()
        get_engine.cache_clear()

    assert inspect(create_engine(database_url)).get_table_names() == []


def test_setup_logging_reuses_handler():
    """Test that repeated setup does not duplicate output."""
    from workshop_chat.core.logging_config import setup_logging

    logger = setup_logging("test_setup_logging", level="info")
    logger = setup_logging("test_setup_logging", level="DEBUG")

    assert len(logger.handlers) == 1
    assert logger.level == logging.DEBUG
    assert logger.handlers[0].level == logging.DEBUG
    assert logger.handlers[0].formatter._fmt == "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def test_llm_client_streams_tokens():
    """Test streaming through a mocked OpenAI-compatible API."""
    from types import SimpleNamespace
    from unittest.mock import MagicMock

    from workshop_chat.core.llm_client import SYSTEM_PROMPT, LLMClient

    def chunk(content):
        return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])

    upstream = MagicMock()
    upstream.__iter__.return_value = iter([chunk("Hel"), chunk(None), chunk("lo")])

    client = LLMClient(base_url="http://llm.test/v1", api_key="test", model="test-model")
    client.client = MagicMock()
    client.client.chat.completions.create.return_value = upstream

    completion = client.stream_chat_completion(
        [{"role": "user", "content": "hi"}], knowledge_context="## Relevant"
    )

    assert list(completion) == ["Hel", "lo"]
    assert completion.full_response.result(timeout=0) == "Hello"
    upstream.close.assert_called_once()

    kwargs = client.client.chat.completions.create.call_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"][0] == {"role": "system", "content": f"{SYSTEM_PROMPT}\n\n## Relevant"}
    assert not hasattr(LLMClient, "chat")
