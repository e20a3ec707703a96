"""
In-memory chat transcript.

Keeps the ordered user/assistant messages of one terminal session. The
assistant message for an in-flight stream is created empty and rewritten in
place as chunks accumulate.
"""

from __future__ import annotations

import logging

from ollama_chat.client.models import StreamEvent, StreamEventType

from .models import ChatMessage

logger = logging.getLogger(__name__)


class ChatTranscript:
    """Ordered chat messages."""

    def __init__(self) -> None:
        self._messages: list[ChatMessage] = []

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_user(self, text: str) -> ChatMessage:
        message = ChatMessage(role="user", text=text, complete=True)
        self._messages.append(message)
        return message

    def start_assistant(self, model: str | None) -> ChatMessage:
        """Append an empty assistant message to be filled by a stream."""
        message = ChatMessage(role="assistant", model=model)
        self._messages.append(message)
        return message

    def apply(self, message_id: str, event: StreamEvent) -> ChatMessage:
        """Update an assistant message from a stream event."""
        index = self._index_of(message_id)
        message = self._messages[index]
        if message.complete:
            raise ValueError(f"Message {message_id} is already complete")

        updated = message.model_copy(update={
            "text": event.accumulated_text,
            "complete": event.is_terminal,
            "errored": event.event_type is StreamEventType.ERROR,
        })
        self._messages[index] = updated
        return updated

    def last(self) -> ChatMessage | None:
        return self._messages[-1] if self._messages else None

    def clear(self) -> None:
        logger.info("Clearing %d messages", len(self._messages))
        self._messages.clear()

    def _index_of(self, message_id: str) -> int:
        for index, message in enumerate(self._messages):
            if message.id == message_id:
                return index
        raise KeyError(message_id)
