"""
Frame-level dataclasses for the chat stream parser.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

# Wire constants shared with the chat UI server
BLOCK_SEPARATOR = "\n\n"
LINE_SEPARATOR = "\n"
DATA_PREFIX = "data:"
END_SENTINEL = "__END__"


class FrameType(Enum):
    """Kinds of frames extracted from the stream."""
    PAYLOAD = "payload"
    SENTINEL = "sentinel"
    ERROR = "error"


@dataclass(frozen=True)
class RawFrame:
    """One `data:` line (or a read failure) lifted out of the byte stream."""
    frame_type: FrameType
    payload: str
    error: str | None = None
    exception: BaseException | None = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ParserStats:
    """Counters for one parse pass over a response body."""
    reads: int = 0
    bytes_received: int = 0
    blocks: int = 0
    payloads: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "reads": self.reads,
            "bytes_received": self.bytes_received,
            "blocks": self.blocks,
            "payloads": self.payloads,
            "errors": self.errors,
        }
