"""HTTP client for the Workshop Chat API.

Mirrors what the browser chat UI does: it keeps the active conversation and
its messages, adds the user's message optimistically, consumes the SSE reply
and appends the assistant message once the stream ends.
"""
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from workshop_chat.core.logging_config import setup_logging

logger = setup_logging(__name__)

CONVERSATION_HEADER = "X-Conversation-Id"


class ChatClientError(Exception):
    """Raised when a request to the chat API fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ChatMessage:
    id: str
    conversation_id: str
    role: str
    content: str
    created_at: str
    updated_at: str
    sources: Optional[List[Dict[str, str]]] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ChatMessage":
        return cls(
            id=data["id"],
            conversation_id=data["conversationId"],
            role=data["role"],
            content=data["content"],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            sources=data.get("sources"),
        )

    @classmethod
    def temporary(cls, conversation_id: str, role: str, content: str) -> "ChatMessage":
        """Local placeholder until the server copy is loaded."""
        now = datetime.utcnow().isoformat()
        return cls(
            id=f"{role}-{uuid.uuid4().hex}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=now,
            updated_at=now,
        )


@dataclass
class ChatTurn:
    """Outcome of one send_message call."""

    conversation_id: Optional[str]
    content: str = ""
    sources: List[Dict[str, str]] = field(default_factory=list)
    saved: bool = False
    error: Optional[str] = None


def parse_event_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse one line of the SSE response.

    Returns:
        The event payload, ``{"type": "done"}`` for a bare ``[DONE]`` marker,
        or None for comments, blank and unparsable lines
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return {"type": "done"}

    try:
        payload = json.loads(data)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


class ChatClient:
    """Stateful client for one chat user."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

        self.active_conversation_id: Optional[str] = None
        self.messages: List[ChatMessage] = []
        self.knowledge_sources: List[Dict[str, str]] = []
        self.streaming_content = ""
        self.is_streaming = False

    # Chat
    def send_message(
        self,
        content: str,
        on_chunk: Optional[Callable[[str], None]] = None,
        on_sources: Optional[Callable[[List[Dict[str, str]]], None]] = None,
    ) -> Optional[ChatTurn]:
        """
        Send a message and consume the streamed reply.

        Args:
            content: Message text; blank messages are ignored
            on_chunk: Called with the accumulated reply after each token
            on_sources: Called with the knowledge citations when they arrive

        Returns:
            ChatTurn, or None if nothing was sent
        """
        if self.is_streaming or not content.strip():
            return None

        self.is_streaming = True
        self.streaming_content = ""
        self.knowledge_sources = []

        temp_message = ChatMessage.temporary(self.active_conversation_id or "", "user", content)
        self.messages.append(temp_message)

        body: Dict[str, Any] = {"content": content}
        if self.active_conversation_id:
            body["conversationId"] = self.active_conversation_id

        try:
            response = self.session.post(
                f"{self.base_url}/api/chat/send",
                json=body,
                stream=True,
                timeout=self.timeout,
            )
            if not response.ok:
                response.close()
                raise ChatClientError("Failed to send message", status_code=response.status_code)

            conversation_id = response.headers.get(CONVERSATION_HEADER) or self.active_conversation_id
            if self.active_conversation_id is None and conversation_id:
                self.active_conversation_id = conversation_id
                temp_message.conversation_id = conversation_id

            turn = ChatTurn(conversation_id=conversation_id)
            try:
                self._read_stream(response, turn, on_chunk, on_sources)
            finally:
                response.close()

        except requests.RequestException as e:
            self.messages.remove(temp_message)
            logger.error(f"Failed to send message: {e}")
            raise ChatClientError(f"Failed to send message: {e}") from e
        except ChatClientError:
            self.messages.remove(temp_message)
            raise
        finally:
            self.is_streaming = False
            self.streaming_content = ""

        if turn.content:
            assistant_message = ChatMessage.temporary(conversation_id or "", "assistant", turn.content)
            if turn.sources:
                assistant_message.sources = turn.sources
            self.messages.append(assistant_message)

        return turn

    def _read_stream(self, response, turn: ChatTurn, on_chunk, on_sources) -> None:
        for line in response.iter_lines(decode_unicode=True):
            if not line:
                continue
            event = parse_event_line(line)
            if event is None:
                continue

            event_type = event.get("type")
            if event_type == "sources":
                turn.sources = event.get("sources") or []
                self.knowledge_sources = turn.sources
                if on_sources:
                    on_sources(turn.sources)
            elif event_type == "error":
                turn.error = event.get("message") or "Response may not have been saved"
                logger.warning(f"Chat stream reported an error: {turn.error}")
            elif event_type == "done":
                turn.saved = bool(event.get("saved"))
            elif event.get("content"):
                turn.content += event["content"]
                self.streaming_content = turn.content
                if on_chunk:
                    on_chunk(turn.content)

    def select_conversation(self, conversation_id: str) -> List[ChatMessage]:
        """Make a conversation active and load its messages."""
        self.active_conversation_id = conversation_id
        self.streaming_content = ""
        data = self._request("GET", f"/api/chat/conversations/{conversation_id}/messages")
        self.messages = [ChatMessage.from_api(m) for m in data["messages"]]
        return self.messages

    def new_chat(self) -> None:
        self.active_conversation_id = None
        self.messages = []
        self.streaming_content = ""
        self.knowledge_sources = []

    def list_conversations(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/chat/conversations")["conversations"]

    def rename_conversation(self, conversation_id: str, title: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/chat/conversations/{conversation_id}", json={"title": title})

    def delete_conversation(self, conversation_id: str) -> None:
        self._request("DELETE", f"/api/chat/conversations/{conversation_id}")
        if self.active_conversation_id == conversation_id:
            self.new_chat()

    # Knowledge base
    def list_knowledge(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/knowledge")["entries"]

    def search_knowledge(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/knowledge", params={"q": query, "limit": limit})["entries"]

    def get_knowledge_entry(self, entry_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/knowledge/{entry_id}")

    def create_knowledge_entry(
        self, title: str, content: str, contributor: str, tags: Optional[List[str]] = None
    ) -> Dict[str, Any]:
        body = {"title": title, "content": content, "contributor": contributor, "tags": tags or []}
        return self._request("POST", "/api/knowledge", json=body)

    def update_knowledge_entry(self, entry_id: str, **changes: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/api/knowledge/{entry_id}", json=changes)

    def delete_knowledge_entry(self, entry_id: str) -> None:
        self._request("DELETE", f"/api/knowledge/{entry_id}")

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.session.request(
                method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise ChatClientError(f"{method} {path} failed: {e}") from e

        if not response.ok:
            message = f"{method} {path} returned {response.status_code}"
            try:
                message = response.json().get("error", message)
            except ValueError:
                pass
            raise ChatClientError(message, status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()
