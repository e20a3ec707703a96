"""
Terminal front-end for the Ollama chat UI.

Run with ``python -m ollama_chat.main`` or the ``ollama-chat`` script.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import TextIO

from ollama_chat.client import (
    ChatStream,
    PresentationState,
    StreamEvent,
    StreamEventType,
    StreamingChatClient,
)
from ollama_chat.config import Configuration
from ollama_chat.history.transcript import ChatTranscript
from ollama_chat.logging_utils import operation_context

logger = logging.getLogger(__name__)

THINKING_TEXT = "🧠 ..."
ESCALATION_TEXT = " (still thinking)"


class TerminalRenderer:
    """Writes one stream's presentation to a text output."""

    def __init__(self, out: TextIO | None = None):
        self.out = out or sys.stdout
        self._shown = ""

    def attach(self, stream: ChatStream) -> None:
        self._shown = ""
        stream.presentation.add_listener(self._on_transition)
        stream.presentation.add_escalation_listener(self._on_escalation)

    def render(self, event: StreamEvent) -> None:
        if event.event_type is StreamEventType.DONE:
            self.write("\n")
            return

        # Session text is append-only, so only the unseen suffix is written
        self.write(event.accumulated_text[len(self._shown):])
        self._shown = event.accumulated_text

        if event.event_type is StreamEventType.ERROR:
            self.write("\n")

    def _on_transition(
        self, previous: PresentationState, current: PresentationState
    ) -> None:
        if current is PresentationState.WAITING:
            self.write(THINKING_TEXT)
        elif previous is PresentationState.WAITING:
            # Indicator goes away on the first chunk or on a terminal state
            self.write("\r\033[K")

    def _on_escalation(self) -> None:
        self.write(ESCALATION_TEXT)

    def write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()


class ChatConsole:
    """
    Interactive chat loop.

    Only one submission is in flight at a time; `send` declines while a
    stream is being consumed.
    """

    def __init__(
        self,
        client: StreamingChatClient,
        renderer: TerminalRenderer | None = None,
        transcript: ChatTranscript | None = None,
    ) -> None:
        self.client = client
        self.renderer = renderer or TerminalRenderer()
        self.transcript = transcript or ChatTranscript()
        self.sending = False

    async def send(self, prompt: str) -> StreamEvent | None:
        """Submit a prompt and render it; returns the terminal event."""
        if self.sending:
            logger.info("Send ignored: a response is still streaming")
            return None

        stream = self.client.send(prompt)
        if stream is None:
            return None

        self.sending = True
        try:
            self.transcript.add_user(prompt)
            reply = self.transcript.start_assistant(stream.request.model)
            self.renderer.attach(stream)

            last_event = None
            async for event in stream:
                self.transcript.apply(reply.id, event)
                self.renderer.render(event)
                last_event = event
            return last_event
        finally:
            self.sending = False

    async def handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False when the console should exit."""
        command, _, argument = line.partition(" ")
        argument = argument.strip()

        if command == "/quit":
            return False
        if command == "/clear":
            self.transcript.clear()
        elif command == "/models":
            status = await self.client.refresh_status()
            if not status.running:
                self.renderer.write("Runner is not running\n")
            for model in status.models:
                marker = "*" if model == self.client.selection.model else " "
                self.renderer.write(f"{marker} {model}\n")
        elif command == "/toggle":
            status = await self.client.toggle_runner()
            state = "running" if status.running else "stopped"
            self.renderer.write(f"Runner {state}\n")
        elif command == "/model" and argument:
            self.client.select_model(self.client.selection.runner, argument)
            self.renderer.write(f"Using {self.client.selection.label}\n")
        else:
            self.renderer.write(f"Unknown command: {line}\n")
        return True

    async def read_line(
        self, reader: asyncio.StreamReader, shutdown_event: asyncio.Event
    ) -> str | None:
        """
        Read one input line, or None on end of input or shutdown.

        The pending read is cancelled when shutdown wins the race, so no
        thread is left blocked on stdin.
        """
        self.renderer.write("> ")
        read_task = asyncio.create_task(reader.readline())
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        try:
            done, _ = await asyncio.wait(
                [read_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (read_task, shutdown_task):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if read_task not in done:
            return None
        data = read_task.result()
        if not data:
            return None
        return data.decode(errors="replace")

    async def run(
        self,
        shutdown_event: asyncio.Event,
        reader: asyncio.StreamReader | None = None,
    ) -> None:
        async with operation_context("refresh_status"):
            status = await self.client.refresh_status()
        if not status.running:
            logger.warning("Runner is not running; use /toggle to start it")
        elif self.client.selection.model is None:
            logger.warning("Runner has no models; use /model NAME")
        else:
            logger.info("Ready with %s", self.client.selection.label)

        if reader is None:
            reader = await open_stdin_reader()

        while not shutdown_event.is_set():
            line = await self.read_line(reader, shutdown_event)
            if line is None:
                break

            line = line.strip()
            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue

            # An in-flight decline is already logged by send()
            declined = await self.send(line) is None
            if declined and line and not self.client.selection.model:
                logger.warning("No model selected; use /models or /model NAME")


async def open_stdin_reader() -> asyncio.StreamReader:
    """Attach stdin to the running loop as a StreamReader."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


async def main() -> None:
    config = Configuration()
    logging_config = config.get_logging_config()
    logging.basicConfig(
        level=getattr(logging, logging_config["level"]),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    client = StreamingChatClient(
        config.get_client_config(),
        config.get_presentation_config(),
        log_chunks=logging_config["log_chunks"],
    )

    # Setup graceful shutdown handler
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        """Handle shutdown signals gracefully."""
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    async with client:
        console = ChatConsole(client)
        console_task = asyncio.create_task(console.run(shutdown_event))

        done, pending = await asyncio.wait(
            [console_task, asyncio.create_task(shutdown_event.wait())],
            return_when=asyncio.FIRST_COMPLETED,
        )

        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        for task in done:
            if task == console_task:
                exception = task.exception()
                if exception is not None:
                    raise exception

    logging.info("Chat session closed")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
