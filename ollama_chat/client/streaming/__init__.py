"""
Streaming support for the chat client.

- `data:` block framing and the `__END__` sentinel
- Incremental decoding across read boundaries
"""

from __future__ import annotations

from .models import END_SENTINEL, FrameType, RawFrame
from .parser import FrameBuffer, StreamingParser, parse_block

__all__ = [
    "END_SENTINEL",
    "FrameBuffer",
    "FrameType",
    "RawFrame",
    "StreamingParser",
    "parse_block",
]
