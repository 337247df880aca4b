"""Queries against the shared knowledge_entries table."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import Text, cast, func, or_
from sqlalchemy.dialects.postgresql import TSQUERY
from sqlalchemy.orm import Query, Session

from workshop_chat.core.config import get_settings
from workshop_chat.core.database import KnowledgeEntry
from workshop_chat.core.logging_config import setup_logging

logger = setup_logging(__name__)

FALLBACK_MIN_WORD_LENGTH = 3
FALLBACK_MAX_WORDS = 5


def find_all(db: Session) -> List[KnowledgeEntry]:
    return db.query(KnowledgeEntry).order_by(KnowledgeEntry.created_at.desc()).all()


def find_by_id(db: Session, entry_id: UUID) -> Optional[KnowledgeEntry]:
    return db.query(KnowledgeEntry).filter(KnowledgeEntry.id == entry_id).first()


def create(db: Session, data: Dict[str, Any]) -> KnowledgeEntry:
    entry = KnowledgeEntry(**data)
    db.add(entry)
    _commit(db)
    db.refresh(entry)
    return entry


def update(db: Session, entry_id: UUID, data: Dict[str, Any]) -> Optional[KnowledgeEntry]:
    entry = find_by_id(db, entry_id)
    if entry is None:
        return None

    for field, value in data.items():
        setattr(entry, field, value)
    entry.updated_at = datetime.utcnow()
    _commit(db)
    db.refresh(entry)
    return entry


def delete_by_id(db: Session, entry_id: UUID) -> bool:
    deleted = db.query(KnowledgeEntry).filter(KnowledgeEntry.id == entry_id).delete()
    _commit(db)
    return deleted > 0


def full_text_search(db: Session, query: str, limit: int = 5) -> List[KnowledgeEntry]:
    """
    Search knowledge entries, best match first.

    Primary: PostgreSQL full-text search over the weighted search vector
    (title A, content B), ranked by ts_rank. Any query word may match.

    Fallback, only when full-text search finds nothing: case-insensitive
    substring match of up to 5 query words (longer than 2 characters) against
    title or content, newest first.

    Args:
        db: Database session
        query: Free-text query
        limit: Maximum number of entries to return

    Returns:
        List of KnowledgeEntry objects
    """
    results = _ranked_search(db, query, limit)
    if results:
        return results

    words = significant_words(query)
    if not words:
        logger.debug(f"No significant words in query {query!r}, skipping fallback")
        return []

    conditions = []
    for word in words:
        pattern = f"%{word}%"
        conditions.append(KnowledgeEntry.title.ilike(pattern))
        conditions.append(KnowledgeEntry.content.ilike(pattern))

    results = (
        db.query(KnowledgeEntry)
        .filter(or_(*conditions))
        .order_by(KnowledgeEntry.created_at.desc())
        .limit(limit)
        .all()
    )
    logger.info(f"Substring fallback matched {len(results)} entries for words={words}")
    return results


def significant_words(query: str) -> List[str]:
    """Words used by the substring fallback."""
    words = [w for w in query.split() if len(w) >= FALLBACK_MIN_WORD_LENGTH]
    return words[:FALLBACK_MAX_WORDS]


def _ranked_search(db: Session, query: str, limit: int) -> List[KnowledgeEntry]:
    if db.get_bind().dialect.name != "postgresql":
        return []
    return ranked_search_query(db, query, limit).all()


def ranked_search_query(
    db: Session, query: str, limit: int, fts_config: Optional[str] = None
) -> Query:
    """PostgreSQL full-text query over the search vector, best rank first."""
    fts_config = fts_config or get_settings().fts_config
    # plainto_tsquery joins lexemes with '&'; swap to '|' so any word may match
    ts_query = cast(
        func.replace(cast(func.plainto_tsquery(fts_config, query), Text), "&", "|"),
        TSQUERY,
    )
    rank = func.ts_rank(KnowledgeEntry.search_vector, ts_query)

    return (
        db.query(KnowledgeEntry)
        .filter(KnowledgeEntry.search_vector.op("@@", is_comparison=True)(ts_query))
        .order_by(rank.desc())
        .limit(limit)
    )


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
