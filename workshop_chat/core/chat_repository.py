"""Queries against the conversation and message tables."""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from workshop_chat.core.database import ChatMessage, Conversation


def create_conversation(db: Session, title: str) -> Conversation:
    conversation = Conversation(title=title)
    db.add(conversation)
    _commit(db)
    db.refresh(conversation)
    return conversation


def find_conversations(db: Session) -> List[Conversation]:
    return db.query(Conversation).order_by(Conversation.updated_at.desc()).all()


def find_conversation_by_id(db: Session, conversation_id: UUID) -> Optional[Conversation]:
    return db.query(Conversation).filter(Conversation.id == conversation_id).first()


def update_conversation(db: Session, conversation_id: UUID, title: str) -> Optional[Conversation]:
    conversation = find_conversation_by_id(db, conversation_id)
    if conversation is None:
        return None

    conversation.title = title
    conversation.updated_at = datetime.utcnow()
    _commit(db)
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, conversation_id: UUID) -> bool:
    conversation = find_conversation_by_id(db, conversation_id)
    if conversation is None:
        return False

    # ORM cascade removes the messages as well
    db.delete(conversation)
    _commit(db)
    return True


def find_messages_by_conversation_id(db: Session, conversation_id: UUID) -> List[ChatMessage]:
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.conversation_id == conversation_id)
        .order_by(ChatMessage.created_at.asc())
        .all()
    )


def create_message(
    db: Session,
    conversation_id: UUID,
    role: str,
    content: str,
    sources: Optional[List[Dict[str, Any]]] = None,
) -> ChatMessage:
    now = datetime.utcnow()
    message = ChatMessage(
        conversation_id=conversation_id,
        role=role,
        content=content,
        sources=sources,
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    db.query(Conversation).filter(Conversation.id == conversation_id).update(
        {Conversation.updated_at: now}, synchronize_session=False
    )
    _commit(db)
    db.refresh(message)
    return message


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
