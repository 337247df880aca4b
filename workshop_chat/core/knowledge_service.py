"""Knowledge base business logic and prompt-context assembly."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from workshop_chat.core import knowledge_repository as repository
from workshop_chat.core.config import get_settings
from workshop_chat.core.database import KnowledgeEntry
from workshop_chat.core.errors import KnowledgeEntryNotFoundError
from workshop_chat.core.logging_config import bind_logger, setup_logging
from workshop_chat.core.schemas import KnowledgeEntryCreate, KnowledgeEntryUpdate

logger = setup_logging(__name__)

CONTEXT_HEADER = "## Relevant Knowledge Base Entries"
CONTEXT_FOOTER = (
    "Use the above knowledge to inform your answer. "
    "Cite sources by number [1], [2] etc. when using them."
)


@dataclass
class KnowledgeContext:
    """Prompt context plus the citations it was built from."""

    context: str = ""
    sources: List[Dict[str, str]] = field(default_factory=list)


def list_entries(db: Session) -> List[KnowledgeEntry]:
    logger.info("Listing knowledge entries")
    entries = repository.find_all(db)
    logger.info(f"Listed {len(entries)} knowledge entries")
    return entries


def get_entry(db: Session, entry_id: UUID) -> KnowledgeEntry:
    entry = repository.find_by_id(db, entry_id)
    if entry is None:
        bind_logger(logger, entry_id=entry_id).warning("Knowledge entry not found")
        raise KnowledgeEntryNotFoundError(entry_id)
    return entry


def create_entry(db: Session, data: KnowledgeEntryCreate) -> KnowledgeEntry:
    logger.info(f"Creating knowledge entry {data.title!r} by {data.contributor}")

    entry = repository.create(
        db,
        {
            "title": data.title,
            "content": data.content,
            "tags": normalize_tags(data.tags),
            "contributor": data.contributor,
        },
    )

    bind_logger(logger, entry_id=entry.id).info("Knowledge entry created")
    return entry


def update_entry(db: Session, entry_id: UUID, data: KnowledgeEntryUpdate) -> KnowledgeEntry:
    log = bind_logger(logger, entry_id=entry_id)
    log.info("Updating knowledge entry")

    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if "tags" in changes:
        changes["tags"] = normalize_tags(changes["tags"])

    entry = repository.update(db, entry_id, changes)
    if entry is None:
        log.warning("Knowledge entry not found for update")
        raise KnowledgeEntryNotFoundError(entry_id)

    log.info(f"Knowledge entry updated ({', '.join(changes) or 'no changes'})")
    return entry


def delete_entry(db: Session, entry_id: UUID) -> None:
    log = bind_logger(logger, entry_id=entry_id)
    log.info("Deleting knowledge entry")

    if not repository.delete_by_id(db, entry_id):
        log.warning("Knowledge entry not found for delete")
        raise KnowledgeEntryNotFoundError(entry_id)

    log.info("Knowledge entry deleted")


def search_entries(db: Session, query: str, limit: int = 5) -> List[KnowledgeEntry]:
    logger.info(f"Searching knowledge base (limit={limit}): {query[:80]!r}")
    results = repository.full_text_search(db, query, limit)
    logger.info(f"Knowledge search returned {len(results)} entries")
    return results


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Strip tags and drop duplicates, keeping first occurrence order."""
    seen = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def format_sources(entries: List[KnowledgeEntry]) -> List[Dict[str, str]]:
    """
    Format knowledge entries as citations.

    The citation is a snapshot: it is stored with the assistant message and
    never refreshed when the entry changes.
    """
    return [
        {"id": str(entry.id), "title": entry.title, "contributor": entry.contributor}
        for entry in entries
    ]


def format_context(entries: List[KnowledgeEntry]) -> str:
    """Render entries as a numbered, attributed list for the system prompt."""
    if not entries:
        return ""

    parts = [CONTEXT_HEADER, ""]
    for i, entry in enumerate(entries, 1):
        parts.append(f"### [{i}] {entry.title} (by {entry.contributor})\n{entry.content}")
    parts.extend(["", CONTEXT_FOOTER])
    return "\n".join(parts)


def build_knowledge_context(db: Session, user_message: str) -> KnowledgeContext:
    """
    Build a knowledge context for injection into the LLM system prompt.

    Args:
        db: Database session
        user_message: The message the user just sent

    Returns:
        KnowledgeContext with an empty context string when nothing matched
    """
    results = search_entries(db, user_message, get_settings().knowledge_context_limit)
    if not results:
        return KnowledgeContext()

    return KnowledgeContext(context=format_context(results), sources=format_sources(results))
