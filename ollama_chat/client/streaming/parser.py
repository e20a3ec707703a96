"""
Incremental parser for the chat UI's `data:`-framed response stream.

The server emits blocks separated by a blank line. Every line in a block that
starts with ``data:`` carries a payload (everything after the five-character
prefix, untouched). The payload ``__END__`` marks normal completion. This is a
fixed contract with the chat UI server, not general-purpose SSE: event, id and
retry fields are not interpreted.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import AsyncGenerator, AsyncIterable

import httpx

from .models import (
    BLOCK_SEPARATOR,
    DATA_PREFIX,
    END_SENTINEL,
    LINE_SEPARATOR,
    FrameType,
    ParserStats,
    RawFrame,
)

logger = logging.getLogger(__name__)


class FrameBuffer:
    """
    Holds stream text that has not yet formed a complete block.

    Bytes are decoded incrementally, so a multi-byte character split across two
    reads is reassembled before it reaches the block splitter.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        """Text waiting for its block separator."""
        return self._pending

    def feed(self, data: bytes | str) -> list[str]:
        """Add data and return every block completed by it, in order."""
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._pending += data

        *blocks, self._pending = self._pending.split(BLOCK_SEPARATOR)
        return blocks

    def clear(self) -> None:
        self._decoder.reset()
        self._pending = ""


def parse_block(block: str) -> list[RawFrame]:
    """Extract the frames of one complete block, stopping at the sentinel."""
    frames: list[RawFrame] = []
    for line in block.split(LINE_SEPARATOR):
        if not line.startswith(DATA_PREFIX):
            continue

        payload = line[len(DATA_PREFIX):]
        if payload == END_SENTINEL:
            frames.append(RawFrame(frame_type=FrameType.SENTINEL, payload=payload))
            break
        frames.append(RawFrame(frame_type=FrameType.PAYLOAD, payload=payload))
    return frames


class StreamingParser:
    """Turns an async byte iterator into frames, with read statistics."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self.stats = ParserStats()
        # Whole body text, kept only while no frame has been found
        self.unframed_text = ""

    async def parse_stream(
        self, chunks: AsyncIterable[bytes | str]
    ) -> AsyncGenerator[RawFrame]:
        """
        Parse a response body read by read.

        Yields payload frames in wire order. After the sentinel frame the
        generator returns without pulling another read. A transport failure
        while reading is yielded as a single ERROR frame, after which the
        generator ends; the caller decides how to present it.

        A body that ends without producing any frame leaves its full text in
        `unframed_text`, so the caller can read it as a plain reply.
        """
        buffer = FrameBuffer(self.encoding)
        self.unframed_text = ""
        unframed_blocks: list[str] = []

        try:
            async for chunk in chunks:
                self.stats.reads += 1
                self.stats.bytes_received += len(chunk)

                for block in buffer.feed(chunk):
                    self.stats.blocks += 1
                    frames = parse_block(block)
                    if not frames and self.stats.payloads == 0:
                        unframed_blocks.append(block)

                    for frame in frames:
                        if frame.frame_type == FrameType.SENTINEL:
                            yield frame
                            return

                        self.stats.payloads += 1
                        yield frame

        except (httpx.TransportError, httpx.StreamError, OSError) as e:
            self.stats.errors += 1
            yield RawFrame(
                frame_type=FrameType.ERROR,
                payload="",
                error=f"Stream error: {e}",
                exception=e,
            )
            return

        if self.stats.payloads == 0:
            unframed_blocks.append(buffer.pending)
            self.unframed_text = BLOCK_SEPARATOR.join(unframed_blocks)
        elif buffer.pending:
            logger.debug(
                "Discarding %d chars of unterminated block at end of body",
                len(buffer.pending),
            )

    def get_stats(self) -> dict[str, int]:
        """Get parser statistics for monitoring."""
        return self.stats.as_dict()

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self.stats = ParserStats()
