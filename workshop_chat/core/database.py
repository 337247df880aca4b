"""Database models and setup."""
import enum
from datetime import datetime
from functools import lru_cache
from typing import Iterator, List, Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    create_engine,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TSVECTOR
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from workshop_chat.core.config import get_settings
from workshop_chat.core.logging_config import setup_logging

logger = setup_logging(__name__)

Base = declarative_base()

KNOWLEDGE_TABLE = "knowledge_entries"
USERS_TABLE = "users"


def prefixed(name: str, prefix: Optional[str] = None) -> str:
    """Apply the configured tenant prefix to a table name."""
    if prefix is None:
        prefix = get_settings().table_prefix
    return f"{prefix}_{name}" if prefix else name


CONVERSATIONS_TABLE = prefixed("chat_conversations")
MESSAGES_TABLE = prefixed("chat_messages")
PROJECTS_TABLE = prefixed("projects")

# Portable column types: PostgreSQL in production, SQLite for local runs and tests
JsonColumn = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
TagsColumn = JSON().with_variant(ARRAY(Text), "postgresql")
SearchVectorColumn = Text().with_variant(TSVECTOR(), "postgresql")


# Enums
class MessageRole(str, enum.Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"


# Models
class User(Base):
    """Shared users table, synced from the external auth provider."""

    __tablename__ = USERS_TABLE

    id = Column(Uuid, primary_key=True)
    email = Column(Text, nullable=False)
    display_name = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Project(Base):
    """Workshop projects."""

    __tablename__ = PROJECTS_TABLE

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    owner_id = Column(Uuid, ForeignKey(f"{USERS_TABLE}.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("slug", name=f"{PROJECTS_TABLE}_slug_unique"),)


class Conversation(Base):
    """Chat conversations."""

    __tablename__ = CONVERSATIONS_TABLE

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )


class ChatMessage(Base):
    """Chat messages."""

    __tablename__ = MESSAGES_TABLE

    id = Column(Uuid, primary_key=True, default=uuid4)
    conversation_id = Column(
        Uuid, ForeignKey(f"{CONVERSATIONS_TABLE}.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(String(32), nullable=False)  # "user" or "assistant"
    content = Column(Text, nullable=False)
    sources = Column(JsonColumn, nullable=True)  # [{id, title, contributor}]
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")

    # Indexes
    __table_args__ = (Index(f"ix_{MESSAGES_TABLE}_conversation_id", "conversation_id"),)


class KnowledgeEntry(Base):
    """Shared, crowdsourced knowledge base entries."""

    __tablename__ = KNOWLEDGE_TABLE

    id = Column(Uuid, primary_key=True, default=uuid4)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False)
    tags = Column(TagsColumn, nullable=False, default=list)
    contributor = Column(String(100), nullable=False)
    # Maintained by the trg_knowledge_search_vector trigger on PostgreSQL
    search_vector = Column(SearchVectorColumn, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Indexes
    __table_args__ = (
        Index("idx_knowledge_search", "search_vector", postgresql_using="gin"),
        Index("ix_knowledge_entries_created_at", "created_at"),
    )


def search_vector_ddl(fts_config: Optional[str] = None) -> List[str]:
    """DDL for the trigger that keeps knowledge_entries.search_vector current.

    Title terms are weighted A and content terms B, so title matches rank higher.
    """
    fts_config = fts_config or get_settings().fts_config
    return [
        f"""
        CREATE OR REPLACE FUNCTION knowledge_search_vector_update() RETURNS trigger AS $$
        BEGIN
          NEW.search_vector :=
            setweight(to_tsvector('{fts_config}', COALESCE(NEW.title, '')), 'A') ||
            setweight(to_tsvector('{fts_config}', COALESCE(NEW.content, '')), 'B');
          RETURN NEW;
        END $$ LANGUAGE plpgsql
        """,
        f"DROP TRIGGER IF EXISTS trg_knowledge_search_vector ON {KNOWLEDGE_TABLE}",
        f"""
        CREATE TRIGGER trg_knowledge_search_vector
          BEFORE INSERT OR UPDATE ON {KNOWLEDGE_TABLE}
          FOR EACH ROW EXECUTE FUNCTION knowledge_search_vector_update()
        """,
    ]


# Database engine and session
@lru_cache()
def get_engine() -> Engine:
    """Get database engine."""
    settings = get_settings()
    return create_engine(settings.database_url, pool_pre_ping=True)


def get_session_maker(engine: Optional[Engine] = None) -> sessionmaker:
    """Get session maker."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or get_engine())


def get_db() -> Iterator[Session]:
    """Get database session (dependency injection for FastAPI)."""
    SessionLocal = get_session_maker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None) -> List[str]:
    """Initialize database (create tables and the full-text search trigger).

    Returns:
        Names of the tables known to the metadata
    """
    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)

    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            for statement in search_vector_ddl():
                conn.execute(text(statement))
        logger.info("Full-text search trigger installed on knowledge_entries")

    return list(Base.metadata.tables)
