"""
Error taxonomy for the chat client.

Transport and protocol errors are raised inside a stream's read loop and
converted to a terminal ERROR event there; they do not reach the code
iterating the stream. Misuse of a stream or of the presentation state machine
raises directly.

Each class carries the log category used by `logging_utils.ChatErrorHandler`.
"""

from __future__ import annotations


class ChatClientError(Exception):
    """Base chat client error with request context."""

    category = "unknown_error"

    def __init__(
        self,
        message: str,
        runner: str | None = None,
        model: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.runner = runner
        self.model = model
        self.status_code = status_code


class TransportError(ChatClientError):
    """Connection, read or HTTP status failure."""

    category = "connection_error"


class HTTPStatusError(TransportError):
    """Server answered with a non-success status."""

    category = "http_status_error"


class ProtocolError(ChatClientError):
    """Response body does not follow the expected shape."""

    category = "protocol_error"


class StreamingError(ChatClientError):
    """A stream or session was used after it finished."""

    category = "parameter_error"


class InvalidTransitionError(ChatClientError):
    """Presentation state machine was asked for a transition it does not allow."""

    category = "parameter_error"

    def __init__(self, current: object, target: object):
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target
