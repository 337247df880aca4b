"""Server-sent event framing for streamed chat responses.

Every event is one ``data:`` line holding a JSON object with a ``type``:

- ``{"type": "sources", "sources": [...]}``: knowledge citations, sent first and
  at most once, omitted when there are none
- ``{"type": "token", "content": "..."}``: a piece of the assistant reply
- ``{"type": "done", "saved": true}``: reply finished and persisted
- ``{"type": "error", "message": "..."}``: generation or persistence failed

``done`` and ``error`` are terminal; the stream closes after either.
"""
import enum
import json
import logging
from typing import Any, AsyncIterator, Callable, Dict, Iterable, Iterator, List, Union

from fastapi.concurrency import iterate_in_threadpool

from workshop_chat.core.llm_client import CompletionStream

GENERATION_FAILED_MESSAGE = "Failed to generate response"
SAVE_FAILED_MESSAGE = "Failed to save response"


def sources_event(sources: List[Dict[str, str]]) -> Dict[str, Any]:
    return {"type": "sources", "sources": sources}


def token_event(content: str) -> Dict[str, Any]:
    return {"type": "token", "content": content}


def done_event() -> Dict[str, Any]:
    return {"type": "done", "saved": True}


def error_event(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}


async def to_sse(events: Iterable[Dict[str, Any]]) -> AsyncIterator[Dict[str, str]]:
    """
    Wrap event payloads for sse-starlette's EventSourceResponse.

    The blocking event iterator runs in the threadpool. It is closed when the
    response ends for any reason, including a client disconnect.
    """
    iterator = iter(events)
    try:
        async for event in iterate_in_threadpool(iterator):
            yield {"data": json.dumps(event)}
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()


class StreamState(str, enum.Enum):
    NOT_STARTED = "not_started"
    SOURCES_SENT = "sources_sent"
    FORWARDING = "forwarding"
    FINISHED = "finished"


_TRANSITIONS = {
    StreamState.NOT_STARTED: {StreamState.SOURCES_SENT},
    StreamState.SOURCES_SENT: {StreamState.FORWARDING, StreamState.FINISHED},
    StreamState.FORWARDING: {StreamState.FINISHED},
    StreamState.FINISHED: set(),
}


class ChatEventStream:
    """
    Re-frames a completion stream into chat events and persists the reply.

    States advance ``not_started -> sources_sent -> forwarding -> finished``
    (``forwarding`` is skipped when the model sends no tokens). The sources
    event can only be emitted on the single ``not_started`` transition.

    Args:
        completion: Token stream from the LLM client
        sources: Knowledge citations for this turn
        persist: Called with the full reply text once the stream has ended
        logger: Logger, usually bound to the conversation
    """

    def __init__(
        self,
        completion: CompletionStream,
        sources: List[Dict[str, str]],
        persist: Callable[[str], Any],
        logger: Union[logging.Logger, logging.LoggerAdapter],
    ):
        self.completion = completion
        self.sources = sources
        self.persist = persist
        self.logger = logger
        self.state = StreamState.NOT_STARTED

    def _advance(self, state: StreamState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid chat stream transition: {self.state.value} -> {state.value}")
        self.state = state

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        self._advance(StreamState.SOURCES_SENT)
        return self._events()

    def _events(self) -> Iterator[Dict[str, Any]]:
        try:
            if self.sources:
                yield sources_event(self.sources)

            try:
                for token in self.completion:
                    if self.state is not StreamState.FORWARDING:
                        self._advance(StreamState.FORWARDING)
                    yield token_event(token)
            except Exception as e:
                self.logger.error(f"Completion stream failed: {e}", exc_info=True)
                self._advance(StreamState.FINISHED)
                yield error_event(GENERATION_FAILED_MESSAGE)
                return

            yield self._finish()
        finally:
            if self.state is not StreamState.FINISHED:
                # Client went away mid-stream: nothing is persisted for this turn
                self.logger.warning("Chat stream aborted before completion")
                self.state = StreamState.FINISHED
            self.completion.close()

    def _finish(self) -> Dict[str, Any]:
        try:
            full_text = self.completion.full_response.result()
            self.persist(full_text)
        except Exception as e:
            self.logger.error(f"Failed to save assistant message: {e}", exc_info=True)
            event = error_event(SAVE_FAILED_MESSAGE)
        else:
            self.logger.info("Assistant message saved")
            event = done_event()

        self._advance(StreamState.FINISHED)
        return event
