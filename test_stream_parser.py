#!/usr/bin/env python3
"""
Tests for the `data:` block parser.

Covers block splitting across arbitrary read boundaries, payload extraction
and the `__END__` sentinel.
"""

import httpx
import pytest

from ollama_chat.client.streaming.models import FrameType
from ollama_chat.client.streaming.parser import FrameBuffer, StreamingParser, parse_block

STREAM = b"data:A\n\ndata:B\n\ndata:__END__\n\n"


async def iterate(chunks):
    for chunk in chunks:
        yield chunk


async def payloads_of(chunks):
    """Run the parser and return (payloads, saw_sentinel)."""
    parser = StreamingParser()
    payloads = []
    saw_sentinel = False
    async for frame in parser.parse_stream(iterate(chunks)):
        if frame.frame_type == FrameType.SENTINEL:
            saw_sentinel = True
        else:
            payloads.append(frame.payload)
    return payloads, saw_sentinel


class TestFrameBuffer:
    """Test block reassembly."""

    def test_complete_blocks_are_returned(self):
        """Every block followed by a blank line is returned."""
        buffer = FrameBuffer()
        assert buffer.feed("data:A\n\ndata:B\n\n") == ["data:A", "data:B"]
        assert buffer.pending == ""

    def test_partial_block_is_held(self):
        """A block without its separator waits for more data."""
        buffer = FrameBuffer()
        assert buffer.feed("data:Hel") == []
        assert buffer.pending == "data:Hel"
        assert buffer.feed("lo\n") == []
        assert buffer.feed("\ndata:x") == ["data:Hello"]
        assert buffer.pending == "data:x"

    def test_multibyte_character_split_across_reads(self):
        """A UTF-8 character cut between reads is decoded once whole."""
        encoded = "data:héllo 🧠\n\n".encode()
        cut = encoded.index("🧠".encode()) + 2

        buffer = FrameBuffer()
        assert buffer.feed(encoded[:cut]) == []
        assert buffer.feed(encoded[cut:]) == ["data:héllo 🧠"]

    def test_clear_drops_pending_text(self):
        buffer = FrameBuffer()
        buffer.feed("data:stale")
        buffer.clear()
        assert buffer.pending == ""


class TestParseBlock:
    """Test payload extraction from one block."""

    def test_prefix_is_exactly_five_characters(self):
        """Whitespace after `data:` belongs to the payload."""
        frames = parse_block("data: spaced")
        assert [f.payload for f in frames] == [" spaced"]

    def test_non_data_lines_are_ignored(self):
        """Lines without the `data:` prefix carry nothing."""
        frames = parse_block("event: message\nid: 7\ndata:kept\n: comment")
        assert [f.payload for f in frames] == ["kept"]

    def test_multiple_data_lines_in_one_block(self):
        frames = parse_block("data:one\ndata:two")
        assert [f.payload for f in frames] == ["one", "two"]
        assert all(f.frame_type == FrameType.PAYLOAD for f in frames)

    def test_sentinel_stops_block(self):
        """Nothing after the sentinel in the same block is extracted."""
        frames = parse_block("data:A\ndata:__END__\ndata:late")
        assert [f.frame_type for f in frames] == [FrameType.PAYLOAD, FrameType.SENTINEL]

    def test_sentinel_must_match_exactly(self):
        """A padded sentinel is an ordinary payload."""
        frames = parse_block("data: __END__")
        assert frames[0].frame_type == FrameType.PAYLOAD

    def test_empty_payload_is_a_payload(self):
        frames = parse_block("data:")
        assert [f.payload for f in frames] == [""]


class TestStreamingParser:
    """Test the async parse loop."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("split", range(1, len(STREAM)))
    async def test_any_two_way_split_yields_same_chunks(self, split):
        """Cutting the stream at any byte gives [A, B] then termination."""
        payloads, saw_sentinel = await payloads_of([STREAM[:split], STREAM[split:]])
        assert payloads == ["A", "B"]
        assert saw_sentinel

    @pytest.mark.asyncio
    async def test_byte_at_a_time(self):
        """One-byte reads reassemble every block."""
        payloads, saw_sentinel = await payloads_of([bytes([b]) for b in STREAM])
        assert payloads == ["A", "B"]
        assert saw_sentinel

    @pytest.mark.asyncio
    async def test_reading_stops_at_sentinel(self):
        """No read is pulled after the sentinel."""
        pulled = []

        async def body():
            yield b"data:A\n\ndata:__END__\n\n"
            pulled.append("late")
            yield b"data:late\n\n"

        parser = StreamingParser()
        frames = [frame async for frame in parser.parse_stream(body())]

        assert [f.payload for f in frames] == ["A", "__END__"]
        assert pulled == []

    @pytest.mark.asyncio
    async def test_unterminated_trailing_block_is_discarded(self):
        payloads, saw_sentinel = await payloads_of([b"data:A\n\ndata:partial"])
        assert payloads == ["A"]
        assert not saw_sentinel

    @pytest.mark.asyncio
    async def test_frameless_body_is_kept(self):
        parser = StreamingParser()
        frames = [f async for f in parser.parse_stream(iterate([b'{"a":\n\n1}', b"\n"]))]

        assert frames == []
        assert parser.unframed_text == '{"a":\n\n1}\n'

    @pytest.mark.asyncio
    async def test_framed_body_keeps_no_unframed_text(self):
        parser = StreamingParser()
        async for _ in parser.parse_stream(iterate([b"junk\n\ndata:A\n\n"])):
            pass
        assert parser.unframed_text == ""

    @pytest.mark.asyncio
    async def test_read_failure_becomes_error_frame(self):
        """A transport failure ends the parse with one ERROR frame."""

        async def body():
            yield b"data:A\n\n"
            raise httpx.ReadError("connection reset")

        parser = StreamingParser()
        frames = [frame async for frame in parser.parse_stream(body())]

        assert [f.frame_type for f in frames] == [FrameType.PAYLOAD, FrameType.ERROR]
        assert isinstance(frames[-1].exception, httpx.ReadError)
        assert "connection reset" in frames[-1].error
        assert parser.get_stats()["errors"] == 1

    @pytest.mark.asyncio
    async def test_statistics(self):
        parser = StreamingParser()
        async for _ in parser.parse_stream(iterate([b"data:A\n\n", b"data:B\n\n"])):
            pass

        stats = parser.get_stats()
        assert stats["reads"] == 2
        assert stats["bytes_received"] == 16
        assert stats["blocks"] == 2
        assert stats["payloads"] == 2

        parser.reset_stats()
        assert parser.get_stats()["reads"] == 0
