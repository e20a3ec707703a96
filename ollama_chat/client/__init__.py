"""
Streaming chat client for the Ollama chat UI.

This package provides:
- Type-safe request, session and event models
- Incremental `data:` stream parsing with the `__END__` sentinel
- A presentation state machine for renderers
- Status lookup and model selection
"""

from __future__ import annotations

from .client import ChatStream, StreamingChatClient
from .exceptions import (
    ChatClientError,
    HTTPStatusError,
    InvalidTransitionError,
    ProtocolError,
    StreamingError,
    TransportError,
)
from .models import (
    ChatRequest,
    ModelSelection,
    StatusResponse,
    StreamEvent,
    StreamEventType,
    StreamSession,
)
from .presentation import PresentationState, PresentationStateMachine

__all__ = [
    # Core models
    "ChatRequest",
    # Client
    "ChatStream",
    # Exceptions
    "ChatClientError",
    "HTTPStatusError",
    "InvalidTransitionError",
    "ModelSelection",
    # Presentation
    "PresentationState",
    "PresentationStateMachine",
    "ProtocolError",
    "StatusResponse",
    "StreamEvent",
    "StreamEventType",
    "StreamSession",
    "StreamingChatClient",
    "StreamingError",
    "TransportError",
]
