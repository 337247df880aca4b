"""FastAPI web application."""
from typing import Optional
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse

from workshop_chat.core import chat_service, knowledge_service
from workshop_chat.core.config import get_settings
from workshop_chat.core.database import MessageRole, get_db
from workshop_chat.core.errors import AppError
from workshop_chat.core.llm_client import LLMClient, get_llm_client
from workshop_chat.core.logging_config import bind_logger, setup_logging
from workshop_chat.core.schemas import (
    QUERY_MAX_LENGTH,
    SEARCH_LIMIT_DEFAULT,
    SEARCH_LIMIT_MAX,
    ConversationCreate,
    ConversationList,
    ConversationResponse,
    ConversationUpdate,
    KnowledgeEntryCreate,
    KnowledgeEntryList,
    KnowledgeEntryResponse,
    KnowledgeEntryUpdate,
    MessageList,
    MessageResponse,
    SendMessageRequest,
)
from workshop_chat.core.sse import ChatEventStream, to_sse

logger = setup_logging("web_api")

TAGS_SYSTEM = "System"
TAGS_CHAT = "Chat"
TAGS_CONVERSATIONS = "Conversations"
TAGS_KNOWLEDGE = "Knowledge"

CONVERSATION_HEADER = "X-Conversation-Id"

app = FastAPI(
    title="Workshop Chat",
    description="Chat assistant backed by a shared, crowdsourced knowledge base",
    version="0.1.0",
    openapi_tags=[
        {"name": TAGS_SYSTEM, "description": "Health checks."},
        {
            "name": TAGS_CHAT,
            "description": "Send a message: knowledge search + LLM reply streamed over SSE.",
        },
        {"name": TAGS_CONVERSATIONS, "description": "Conversation and message history."},
        {"name": TAGS_KNOWLEDGE, "description": "Shared knowledge base entries (search and CRUD)."},
    ],
)

settings = get_settings()


# Error handling
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "code": "VALIDATION_ERROR",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Database error", "code": "DATABASE_ERROR"})


# Endpoints
@app.get(
    "/health",
    tags=[TAGS_SYSTEM],
    summary="Health check",
    description="Liveness check. Returns 200 while the process is up.",
)
async def health():
    return {"status": "ok"}


@app.post(
    "/api/chat/send",
    tags=[TAGS_CHAT],
    summary="Send a message (SSE)",
    description=(
        "Persists the user message, searches the knowledge base, and streams the "
        "assistant reply as Server-Sent Events. A new conversation is created when "
        "`conversationId` is omitted; its id is returned in the `X-Conversation-Id` header."
        "\n\nEvent payloads: `sources` (at most once, first), `token` (reply pieces), "
        "then a terminal `done` or `error`."
    ),
    responses={
        200: {"description": "text/event-stream of chat events."},
        400: {"description": "Invalid request body."},
        404: {"description": "Conversation not found."},
        500: {"description": "Database or LLM provider failure."},
    },
)
def send_message(
    request: SendMessageRequest,
    db: Session = Depends(get_db),
    llm_client: LLMClient = Depends(get_llm_client),
):
    """
    Send a message and stream the reply.

    Flow:
        1) Create the conversation if needed (title from the first message).
        2) Save the user message.
        3) Build knowledge context from the message.
        4) Start the LLM stream over the conversation history.
        5) Stream events; save the assistant message with its sources at the end.

    The user and assistant writes are independent: if the stream is aborted the
    user message stays without a reply.
    """
    conversation_id = request.conversation_id
    if conversation_id is None:
        title = chat_service.generate_title_from_message(request.content)
        conversation_id = chat_service.create_conversation(db, title).id
    else:
        chat_service.get_conversation(db, conversation_id)

    log = bind_logger(logger, conversation_id=conversation_id)

    chat_service.add_message(db, conversation_id, MessageRole.USER, request.content)

    knowledge = knowledge_service.build_knowledge_context(db, request.content)
    if knowledge.sources:
        log.info(f"Knowledge context found ({len(knowledge.sources)} sources)")

    history = chat_service.get_messages(db, conversation_id)

    try:
        completion = llm_client.stream_chat_completion(history, knowledge_context=knowledge.context)
    except Exception as e:
        log.error(f"Error starting chat completion: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to start chat completion")

    def save_reply(full_text: str) -> None:
        chat_service.add_message(
            db, conversation_id, MessageRole.ASSISTANT, full_text, sources=knowledge.sources
        )

    events = ChatEventStream(completion, knowledge.sources, save_reply, log)
    return EventSourceResponse(
        to_sse(events),
        headers={CONVERSATION_HEADER: str(conversation_id)},
    )


@app.get(
    "/api/chat/conversations",
    response_model=ConversationList,
    tags=[TAGS_CONVERSATIONS],
    summary="List conversations",
    description="All conversations, most recently active first.",
)
def list_conversations(db: Session = Depends(get_db)):
    return ConversationList(
        conversations=[
            ConversationResponse.model_validate(c) for c in chat_service.list_conversations(db)
        ]
    )


@app.post(
    "/api/chat/conversations",
    response_model=ConversationResponse,
    status_code=201,
    tags=[TAGS_CONVERSATIONS],
    summary="Create conversation",
)
def create_conversation(body: ConversationCreate, db: Session = Depends(get_db)):
    return ConversationResponse.model_validate(chat_service.create_conversation(db, body.title))


@app.get(
    "/api/chat/conversations/{conversation_id}",
    response_model=ConversationResponse,
    tags=[TAGS_CONVERSATIONS],
    summary="Get conversation",
    responses={404: {"description": "Conversation not found."}},
)
def get_conversation(conversation_id: UUID, db: Session = Depends(get_db)):
    return ConversationResponse.model_validate(chat_service.get_conversation(db, conversation_id))


@app.patch(
    "/api/chat/conversations/{conversation_id}",
    response_model=ConversationResponse,
    tags=[TAGS_CONVERSATIONS],
    summary="Rename conversation",
    responses={404: {"description": "Conversation not found."}},
)
def rename_conversation(
    conversation_id: UUID,
    body: ConversationUpdate,
    db: Session = Depends(get_db),
):
    conversation = chat_service.update_conversation(db, conversation_id, body.title)
    return ConversationResponse.model_validate(conversation)


@app.delete(
    "/api/chat/conversations/{conversation_id}",
    status_code=204,
    tags=[TAGS_CONVERSATIONS],
    summary="Delete conversation",
    description="Deletes the conversation and all of its messages.",
    responses={404: {"description": "Conversation not found."}},
)
def delete_conversation(conversation_id: UUID, db: Session = Depends(get_db)):
    chat_service.delete_conversation(db, conversation_id)
    return Response(status_code=204)


@app.get(
    "/api/chat/conversations/{conversation_id}/messages",
    response_model=MessageList,
    tags=[TAGS_CONVERSATIONS],
    summary="List messages",
    description="Messages of a conversation, oldest first. Assistant messages carry their cited sources.",
    responses={404: {"description": "Conversation not found."}},
)
def list_messages(conversation_id: UUID, db: Session = Depends(get_db)):
    messages = chat_service.get_messages(db, conversation_id)
    return MessageList(messages=[MessageResponse.model_validate(m) for m in messages])


@app.get(
    "/api/knowledge",
    response_model=KnowledgeEntryList,
    tags=[TAGS_KNOWLEDGE],
    summary="List or search knowledge entries",
    description=(
        "Without `q`, returns every entry, newest first. With `q`, runs a full-text "
        "search (any word may match, best match first) and falls back to a substring "
        "match, newest first, when full-text search finds nothing."
    ),
)
def list_knowledge(
    q: Optional[str] = Query(None, max_length=QUERY_MAX_LENGTH, description="Search query."),
    limit: int = Query(SEARCH_LIMIT_DEFAULT, ge=1, le=SEARCH_LIMIT_MAX, description="Max results when searching."),
    db: Session = Depends(get_db),
):
    if q:
        entries = knowledge_service.search_entries(db, q, limit)
    else:
        entries = knowledge_service.list_entries(db)
    return KnowledgeEntryList(entries=[KnowledgeEntryResponse.model_validate(e) for e in entries])


@app.post(
    "/api/knowledge",
    response_model=KnowledgeEntryResponse,
    status_code=201,
    tags=[TAGS_KNOWLEDGE],
    summary="Create knowledge entry",
    responses={400: {"description": "Field length or tag constraints violated."}},
)
def create_knowledge_entry(body: KnowledgeEntryCreate, db: Session = Depends(get_db)):
    return KnowledgeEntryResponse.model_validate(knowledge_service.create_entry(db, body))


@app.get(
    "/api/knowledge/{entry_id}",
    response_model=KnowledgeEntryResponse,
    tags=[TAGS_KNOWLEDGE],
    summary="Get knowledge entry",
    responses={404: {"description": "Entry not found."}},
)
def get_knowledge_entry(entry_id: UUID, db: Session = Depends(get_db)):
    return KnowledgeEntryResponse.model_validate(knowledge_service.get_entry(db, entry_id))


@app.patch(
    "/api/knowledge/{entry_id}",
    response_model=KnowledgeEntryResponse,
    tags=[TAGS_KNOWLEDGE],
    summary="Update knowledge entry",
    responses={404: {"description": "Entry not found."}},
)
def update_knowledge_entry(entry_id: UUID, body: KnowledgeEntryUpdate, db: Session = Depends(get_db)):
    return KnowledgeEntryResponse.model_validate(knowledge_service.update_entry(db, entry_id, body))


@app.delete(
    "/api/knowledge/{entry_id}",
    status_code=204,
    tags=[TAGS_KNOWLEDGE],
    summary="Delete knowledge entry",
    description="Past chat citations of the entry are kept as they were.",
    responses={404: {"description": "Entry not found."}},
)
def delete_knowledge_entry(entry_id: UUID, db: Session = Depends(get_db)):
    knowledge_service.delete_entry(db, entry_id)
    return Response(status_code=204)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.app_host, port=settings.app_port)
