"""Request and response models for the HTTP API.

JSON bodies use camelCase (``conversationId``, ``createdAt``); the Python side
uses snake_case. Both spellings are accepted on input.
"""
from datetime import datetime
from typing import Annotated, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

TITLE_MAX_LENGTH = 200
CONTENT_MAX_LENGTH = 50000
TAG_MAX_LENGTH = 50
MAX_TAGS = 10
CONTRIBUTOR_MAX_LENGTH = 100
QUERY_MAX_LENGTH = 500
SEARCH_LIMIT_DEFAULT = 5
SEARCH_LIMIT_MAX = 20

Tag = Annotated[str, StringConstraints(min_length=1, max_length=TAG_MAX_LENGTH)]


class ApiModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Knowledge
class KnowledgeSource(ApiModel):
    """Lightweight citation of a knowledge entry, stored with assistant messages."""

    id: str
    title: str
    contributor: str


class KnowledgeEntryCreate(ApiModel):
    """Create a knowledge entry."""

    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH, examples=["Deploying with Docker"])
    content: str = Field(..., min_length=1, max_length=CONTENT_MAX_LENGTH)
    tags: List[Tag] = Field(default_factory=list, max_length=MAX_TAGS, examples=[["docker", "deploy"]])
    contributor: str = Field(..., min_length=1, max_length=CONTRIBUTOR_MAX_LENGTH, examples=["ada"])


class KnowledgeEntryUpdate(ApiModel):
    """Partial update of a knowledge entry; omitted fields are left unchanged."""

    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    content: Optional[str] = Field(None, min_length=1, max_length=CONTENT_MAX_LENGTH)
    tags: Optional[List[Tag]] = Field(None, max_length=MAX_TAGS)
    contributor: Optional[str] = Field(None, min_length=1, max_length=CONTRIBUTOR_MAX_LENGTH)


class KnowledgeEntryResponse(ApiModel):
    id: UUID
    title: str
    content: str
    tags: List[str]
    contributor: str
    created_at: datetime
    updated_at: datetime


class KnowledgeEntryList(ApiModel):
    entries: List[KnowledgeEntryResponse]


# Chat
class SendMessageRequest(ApiModel):
    """Send a chat message, optionally continuing an existing conversation."""

    content: str = Field(..., min_length=1, description="User message text.")
    conversation_id: Optional[UUID] = Field(
        None, description="Existing conversation; omitted to start a new one."
    )


class ConversationCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)


class ConversationUpdate(ApiModel):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)


class ConversationResponse(ApiModel):
    id: UUID
    title: str
    created_at: datetime
    updated_at: datetime


class ConversationList(ApiModel):
    conversations: List[ConversationResponse]


class MessageResponse(ApiModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    sources: Optional[List[KnowledgeSource]] = None
    created_at: datetime
    updated_at: datetime


class MessageList(ApiModel):
    messages: List[MessageResponse]
