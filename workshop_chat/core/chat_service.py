"""Conversation and message management."""
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from workshop_chat.core import chat_repository as repository
from workshop_chat.core.database import ChatMessage, Conversation, MessageRole
from workshop_chat.core.errors import ConversationNotFoundError, InvalidMessageRoleError
from workshop_chat.core.logging_config import bind_logger, setup_logging

logger = setup_logging(__name__)

TITLE_MAX_CHARS = 50
DEFAULT_TITLE = "New conversation"


def create_conversation(db: Session, title: str) -> Conversation:
    conversation = repository.create_conversation(db, title)
    bind_logger(logger, conversation_id=conversation.id).info("Conversation created")
    return conversation


def list_conversations(db: Session) -> List[Conversation]:
    conversations = repository.find_conversations(db)
    logger.info(f"Listed {len(conversations)} conversations")
    return conversations


def get_conversation(db: Session, conversation_id: UUID) -> Conversation:
    conversation = repository.find_conversation_by_id(db, conversation_id)
    if conversation is None:
        bind_logger(logger, conversation_id=conversation_id).warning("Conversation not found")
        raise ConversationNotFoundError(conversation_id)
    return conversation


def update_conversation(db: Session, conversation_id: UUID, title: str) -> Conversation:
    log = bind_logger(logger, conversation_id=conversation_id)
    conversation = repository.update_conversation(db, conversation_id, title)
    if conversation is None:
        log.warning("Conversation not found for rename")
        raise ConversationNotFoundError(conversation_id)

    log.info("Conversation renamed")
    return conversation


def delete_conversation(db: Session, conversation_id: UUID) -> None:
    log = bind_logger(logger, conversation_id=conversation_id)
    if not repository.delete_conversation(db, conversation_id):
        log.warning("Conversation not found for delete")
        raise ConversationNotFoundError(conversation_id)

    log.info("Conversation deleted")


def get_messages(db: Session, conversation_id: UUID) -> List[ChatMessage]:
    """Messages of an existing conversation, oldest first."""
    get_conversation(db, conversation_id)
    messages = repository.find_messages_by_conversation_id(db, conversation_id)
    bind_logger(logger, conversation_id=conversation_id).info(f"Loaded {len(messages)} messages")
    return messages


def add_message(
    db: Session,
    conversation_id: UUID,
    role: Union[MessageRole, str],
    content: str,
    sources: Optional[List[Dict[str, Any]]] = None,
) -> ChatMessage:
    """
    Persist a message.

    Args:
        db: Database session
        conversation_id: Owning conversation
        role: "user" or "assistant"
        content: Message text
        sources: Knowledge citations; stored only when non-empty

    Returns:
        The created ChatMessage
    """
    try:
        role = MessageRole(role)
    except ValueError:
        raise InvalidMessageRoleError(role) from None

    message = repository.create_message(
        db,
        conversation_id,
        role.value,
        content,
        sources=sources or None,
    )
    bind_logger(logger, conversation_id=conversation_id, role=role.value).info(
        f"Message added: {message.id}"
    )
    return message


def generate_title_from_message(content: str) -> str:
    """Conversation title from the first message, truncated to 50 characters."""
    trimmed = content.strip()
    if not trimmed:
        return DEFAULT_TITLE
    if len(trimmed) <= TITLE_MAX_CHARS:
        return trimmed
    return f"{trimmed[:TITLE_MAX_CHARS]}..."
