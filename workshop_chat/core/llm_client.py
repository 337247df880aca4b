"""Chat completion client for OpenAI-compatible APIs."""
from concurrent.futures import Future
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from openai import OpenAI

from workshop_chat.core.config import get_settings
from workshop_chat.core.logging_config import setup_logging

logger = setup_logging(__name__)

SYSTEM_PROMPT = """You are a helpful AI assistant with access to a shared knowledge base contributed by the community.

When relevant knowledge base entries are provided below, you MUST use them to answer the question and cite sources by number (e.g. [1], [2]). Do not claim you cannot search or access the knowledge base: the system automatically searches it for every message and injects relevant entries into this prompt.

If no knowledge base entries are provided, answer using your general knowledge. Be concise, accurate, and friendly."""


class CompletionStream:
    """
    Live token stream of a chat completion.

    Iterate it to receive tokens as they arrive. ``full_response`` is a
    Future resolving to the assembled text once the stream has ended; it
    fails with the upstream error if the stream breaks and is cancelled if
    the stream is closed early. Do not read it before iteration finishes.
    """

    def __init__(self, tokens: Iterable[str], on_close: Optional[Callable[[], None]] = None):
        self._tokens = tokens
        self._on_close = on_close
        self._parts: List[str] = []
        self._started = False
        self.full_response: Future = Future()

    def __iter__(self) -> Iterator[str]:
        if self._started:
            raise RuntimeError("Completion stream can only be consumed once")
        self._started = True
        return self._iterate()

    def _iterate(self) -> Iterator[str]:
        try:
            for token in self._tokens:
                self._parts.append(token)
                yield token
        except Exception as e:
            self.full_response.set_exception(e)
            raise
        else:
            self.full_response.set_result("".join(self._parts))
        finally:
            self.close()

    def close(self) -> None:
        """Abandon the stream and release the upstream connection."""
        if not self.full_response.done():
            self.full_response.cancel()
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            on_close()


class LLMClient:
    """Client for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ):
        """
        Initialize LLM client.

        Args:
            base_url: API base URL
            api_key: API key
            model: Model name
        """
        settings = get_settings()
        self.base_url = base_url or settings.llm_base_url
        self.api_key = api_key or settings.llm_api_key
        self.model = model or settings.llm_model
        self.max_tokens = settings.llm_max_tokens
        self.temperature = settings.llm_temperature
        self.max_context_messages = settings.max_context_messages

        self.client = OpenAI(base_url=self.base_url, api_key=self.api_key)
        logger.info(f"LLM client initialized: {self.base_url}, model: {self.model}")

    def stream_chat_completion(
        self,
        history: Sequence[Any],
        knowledge_context: str = "",
    ) -> CompletionStream:
        """
        Start a streaming chat completion over the conversation history.

        The upstream request is sent before this returns, so connection and
        authentication errors surface here rather than mid-stream.

        Args:
            history: Messages oldest first (ORM messages or role/content dicts)
            knowledge_context: Knowledge base excerpts for the system prompt

        Returns:
            CompletionStream of text tokens
        """
        messages = build_chat_messages(history, knowledge_context, self.max_context_messages)

        try:
            stream = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )
        except Exception as e:
            logger.error(f"Error starting chat completion stream: {e}")
            raise

        logger.info(
            f"Chat completion stream started ({len(messages) - 1} history messages, "
            f"context={'yes' if knowledge_context else 'no'})"
        )
        return CompletionStream(_iter_content(stream), on_close=stream.close)


def _iter_content(stream) -> Iterator[str]:
    for chunk in stream:
        if chunk.choices and chunk.choices[0].delta.content:
            yield chunk.choices[0].delta.content


def build_chat_messages(
    history: Sequence[Any],
    knowledge_context: str = "",
    max_context_messages: int = 50,
) -> List[Dict[str, str]]:
    """
    Build the message list for the chat API.

    Args:
        history: Conversation messages, oldest first
        knowledge_context: Optional knowledge base context
        max_context_messages: Only the most recent messages are sent

    Returns:
        List of messages, system prompt first
    """
    system_message = SYSTEM_PROMPT
    if knowledge_context:
        system_message = f"{SYSTEM_PROMPT}\n\n{knowledge_context}"

    recent = list(history)[-max_context_messages:] if max_context_messages > 0 else []

    messages = [{"role": "system", "content": system_message}]
    for message in recent:
        if isinstance(message, dict):
            messages.append({"role": message["role"], "content": message["content"]})
        else:
            messages.append({"role": message.role, "content": message.content})
    return messages


# Singleton instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create singleton LLM client."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
