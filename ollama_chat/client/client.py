"""
Streaming chat client for the Ollama chat UI.

`StreamingChatClient.submit` turns one prompt into a `ChatStream`: a lazy,
single-use async sequence of `StreamEvent` items (text chunks followed by one
DONE or ERROR event). Failures never escape the stream; they become a terminal
ERROR event whose text depends on whether any chunk was already shown.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import ValidationError

from ollama_chat.logging_utils import ChatErrorHandler, ContextualLogger, log_operation

from .exceptions import HTTPStatusError, ProtocolError, StreamingError, TransportError
from .models import (
    DEFAULT_RUNNER,
    ChatRequest,
    ModelSelection,
    StatusResponse,
    StreamEvent,
    StreamEventType,
    StreamSession,
)
from .presentation import DEFAULT_ESCALATION_DELAY, PresentationStateMachine
from .streaming.models import FrameType
from .streaming.parser import StreamingParser

logger = logging.getLogger(__name__)

DEFAULT_MESSAGES = {
    "connect_error": "🧠 Error connecting to stream.",
    "stream_error": "🧠 Error streaming response.",
    "response_error": "🧠 Error getting response.",
    "stream_error_marker": "\n\n[stream error]",
    "empty_response": "No response",
}

DEFAULT_TOGGLE_PATH = "/toggle-ollama"
DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_POLL_ATTEMPTS = 40


def _is_single_shot(response: httpx.Response) -> bool:
    """A JSON body is a complete reply, not a stream."""
    content_type = response.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower() == "application/json"


class ChatStream:
    """
    One submission's event sequence.

    Nothing is sent until the stream is iterated, and it can be iterated only
    once. The `presentation` state machine is driven as events are produced;
    attach listeners to it before iterating.
    """

    def __init__(self, client: StreamingChatClient, request: ChatRequest):
        self.request = request
        self.session = StreamSession()
        self.presentation = PresentationStateMachine(client.escalation_delay)
        self.parser = StreamingParser()
        self._client = client
        self._consumed = False
        self._log = ContextualLogger({
            "session_id": self.session.session_id,
            "model": request.model,
            "runner": request.runner,
        })

    @property
    def state(self):
        return self.presentation.state

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._consumed:
            raise StreamingError(
                "Chat stream can only be iterated once",
                runner=self.request.runner,
                model=self.request.model,
            )
        self._consumed = True
        return self._run()

    async def collect(self) -> StreamSession:
        """Drain the stream and return the finished session."""
        async for _ in self:
            pass
        return self.session

    async def _run(self) -> AsyncGenerator[StreamEvent]:
        messages = self._client.messages
        self.presentation.begin()
        self._log.info("Chat stream started", prompt_chars=len(self.request.prompt))

        try:
            async with self._client.client.stream(
                "POST",
                self._client.config["stream_path"],
                json=self.request.to_payload(),
            ) as response:
                if response.is_error:
                    raise HTTPStatusError(
                        f"Stream endpoint returned {response.status_code}",
                        runner=self.request.runner,
                        model=self.request.model,
                        status_code=response.status_code,
                    )

                if _is_single_shot(response):
                    async for event in self._read_single_shot(response):
                        yield event
                    return

                async for event in self._pump(response):
                    yield event

        except (httpx.HTTPError, TransportError, OSError) as e:
            if self.session.terminated:
                # Failure while closing after the session already ended
                self._log.debug("Ignoring error after termination", error=str(e))
                return
            yield self._fail(e, messages["connect_error"])

        finally:
            self.presentation.cancel_escalation()

    async def _pump(self, response: httpx.Response) -> AsyncGenerator[StreamEvent]:
        frames = self.parser.parse_stream(response.aiter_bytes())
        async with aclosing(frames):
            async for frame in frames:
                if frame.frame_type is FrameType.SENTINEL:
                    await response.aclose()
                    yield self._finish("sentinel")
                    return

                if frame.frame_type is FrameType.ERROR:
                    error = frame.exception or TransportError(frame.error or "")
                    yield self._fail(error, self._client.messages["stream_error"])
                    return

                yield self._chunk(frame.payload)

        # No data: lines at all; the server may have sent a plain JSON reply
        # without the JSON content type
        text = self._unframed_reply(self.parser.unframed_text)
        if text is not None:
            yield self._chunk(text)
            yield self._finish("unframed_json")
            return

        yield self._finish("body_exhausted")

    async def _read_single_shot(
        self, response: httpx.Response
    ) -> AsyncGenerator[StreamEvent]:
        try:
            text = self._decode_single_shot(await response.aread())
        except (httpx.HTTPError, ProtocolError) as e:
            yield self._fail(e, self._client.messages["response_error"])
            return

        yield self._chunk(text)
        yield self._finish("single_shot")

    def _decode_single_shot(self, body: bytes) -> str:
        try:
            data = json.loads(body)
        except ValueError as e:
            raise ProtocolError(
                f"Unreadable JSON response: {e}",
                runner=self.request.runner,
                model=self.request.model,
            ) from e

        return self._reply_text(data)

    def _reply_text(self, data: Any) -> str:
        text = data.get("response") if isinstance(data, dict) else None
        if not text:
            return self._client.messages["empty_response"]
        return str(text)

    def _unframed_reply(self, body: str) -> str | None:
        """Reply text of a frameless body that is a JSON object, else None."""
        if not body.strip():
            return None
        try:
            data = json.loads(body)
        except ValueError:
            self._log.debug("Frameless body is not JSON", chars=len(body))
            return None
        if not isinstance(data, dict):
            return None
        return self._reply_text(data)

    def _chunk(self, payload: str) -> StreamEvent:
        first = not self.session.started
        self.session.started = True
        accumulated = self.session.append(payload)
        if first:
            self.presentation.chunk_received()

        if self._client.log_chunks:
            self._log.debug("Chunk received", payload=payload)
        return StreamEvent(StreamEventType.CHUNK, payload, accumulated)

    def _finish(self, reason: str) -> StreamEvent:
        self.session.terminate()
        self.presentation.finish()
        self._log.info(
            "Chat stream finished",
            reason=reason,
            chars=len(self.session.accumulated_text),
            **self.parser.get_stats(),
        )
        return StreamEvent(StreamEventType.DONE, "", self.session.accumulated_text)

    def _fail(self, error: BaseException, fixed_text: str) -> StreamEvent:
        ChatErrorHandler.log_failure(
            error,
            "chat_stream",
            {
                "session_id": self.session.session_id,
                "started": self.session.started,
                **self.parser.get_stats(),
            },
        )
        # Text already shown is kept; only a marker is added after it
        if self.session.started:
            text = self._client.messages["stream_error_marker"]
        else:
            text = fixed_text

        accumulated = self.session.append(text)
        self.session.terminate()
        self.presentation.fail()
        return StreamEvent(StreamEventType.ERROR, text, accumulated)


class StreamingChatClient:
    """
    HTTP client for the chat UI's streaming and status endpoints.

    Holds the runner/model selection for the next submission. Submissions are
    not serialized here; the caller must not start a new one while a stream
    is still being consumed.
    """

    def __init__(
        self,
        config: dict[str, Any],
        presentation_config: dict[str, Any] | None = None,
        *,
        log_chunks: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        required_keys = ["base_url", "stream_path", "status_path"]
        for key in required_keys:
            if key not in config:
                raise ValueError(
                    f"Required client configuration parameter '{key}' not found"
                )

        self.config: dict[str, Any] = config
        self.log_chunks = log_chunks

        presentation_config = presentation_config or {}
        self.escalation_delay: float = presentation_config.get(
            "escalation_delay", DEFAULT_ESCALATION_DELAY
        )
        self.messages: dict[str, str] = {
            **DEFAULT_MESSAGES,
            **presentation_config.get("messages", {}),
        }

        self.poll_interval: float = config.get(
            "status_poll_interval", DEFAULT_POLL_INTERVAL
        )
        self.poll_attempts: int = config.get(
            "status_poll_attempts", DEFAULT_POLL_ATTEMPTS
        )

        self.selection = ModelSelection(
            runner=config.get("default_runner", DEFAULT_RUNNER)
        )

        http_config = config.get("http_client", {})
        timeout = httpx.Timeout(
            connect=http_config.get("connect_timeout", 10.0),
            # No read deadline: a stalled stream is left open
            read=http_config.get("read_timeout"),
            write=http_config.get("write_timeout", 10.0),
            pool=http_config.get("pool_timeout", 10.0),
        )
        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=config["base_url"],
            timeout=timeout,
            transport=transport,
        )

    def submit(self, request: ChatRequest) -> ChatStream | None:
        """
        Prepare a stream for `request`.

        Returns None, without creating a session, when the prompt is blank
        or no model is selected.
        """
        if not request.is_submittable:
            logger.debug(
                "Submission declined (model=%r, prompt blank=%s)",
                request.model,
                not request.prompt.strip(),
            )
            return None
        return ChatStream(self, request)

    def build_request(self, prompt: str) -> ChatRequest:
        return ChatRequest(
            model=self.selection.model,
            runner=self.selection.runner,
            prompt=prompt,
        )

    def send(self, prompt: str) -> ChatStream | None:
        """Submit `prompt` with the current runner and model."""
        return self.submit(self.build_request(prompt))

    def select_model(self, runner: str, model: str) -> None:
        self.selection.select(runner, model)
        logger.info("Selected model %s", self.selection.label)

    @log_operation("fetch_status")
    async def fetch_status(self) -> StatusResponse:
        """
        Ask the chat UI whether the runner is up and which models it has.

        An unreachable endpoint reports ``running=False``; a reachable one
        with an unreadable body reports ``running=True`` with no models.
        """
        try:
            response = await self.client.get(self.config["status_path"])
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Status endpoint unavailable: %s", e)
            return StatusResponse(running=False)

        try:
            return StatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.warning("Unreadable status payload: %s", e)
            return StatusResponse(running=True)

    async def refresh_status(self) -> StatusResponse:
        """Fetch status and select the first model if none is selected."""
        status = await self.fetch_status()
        if status.running and status.models and self.selection.model is None:
            self.select_model(self.selection.runner, status.models[0])
        return status

    async def wait_until_running(
        self,
        interval: float | None = None,
        attempts: int | None = None,
    ) -> StatusResponse:
        """
        Refresh status until the runner reports running.

        Polls at most `attempts` times, `interval` seconds apart, and returns
        the last status seen whether or not the runner came up.
        """
        interval = self.poll_interval if interval is None else interval
        attempts = self.poll_attempts if attempts is None else attempts
        if interval <= 0 or attempts < 1:
            raise ValueError("Polling needs a positive interval and at least one attempt")

        status = await self.refresh_status()
        for _ in range(attempts - 1):
            if status.running:
                break
            await asyncio.sleep(interval)
            status = await self.refresh_status()

        if not status.running:
            logger.warning("Runner still not running after %d status checks", attempts)
        return status

    @log_operation("toggle_runner")
    async def toggle_runner(self) -> StatusResponse:
        """
        Ask the chat UI to start or stop the runner, then resync.

        When the UI reports the runner started, models are polled until it
        answers. A failed toggle only resyncs the status.
        """
        try:
            response = await self.client.post(
                self.config.get("toggle_path", DEFAULT_TOGGLE_PATH)
            )
            response.raise_for_status()
            toggled = StatusResponse.model_validate(response.json())
        except (httpx.HTTPError, ValueError, ValidationError) as e:
            logger.warning("Runner toggle failed: %s", e)
            return await self.refresh_status()

        logger.info("Runner is now %s", "running" if toggled.running else "stopped")
        if toggled.running:
            return await self.wait_until_running()
        return await self.refresh_status()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> StreamingChatClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
