"""
Core chat client models.

This module provides the request, session and event types that flow through
a chat submission, plus the status payload used to pick a model:
- Immutable chat requests
- Append-only stream sessions
- Stream events handed to renderers
- Runner status and model selection
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .exceptions import StreamingError

DEFAULT_RUNNER = "ollama"


@dataclass(frozen=True)
class ChatRequest:
    """Prompt, model and runner for one submission. Immutable once sent."""
    model: str | None
    runner: str
    prompt: str

    @property
    def is_submittable(self) -> bool:
        return bool(self.model) and bool(self.prompt.strip())

    def to_payload(self) -> dict[str, Any]:
        return {"model": self.model, "runner": self.runner, "prompt": self.prompt}


@dataclass
class StreamSession:
    """Mutable state of one in-flight submission."""
    accumulated_text: str = ""
    started: bool = False
    terminated: bool = False
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def append(self, text: str) -> str:
        """Append text and return the new accumulated value."""
        if self.terminated:
            raise StreamingError(
                f"Session {self.session_id} is terminated; cannot append"
            )
        self.accumulated_text += text
        return self.accumulated_text

    def terminate(self) -> None:
        self.terminated = True


class StreamEventType(Enum):
    """Items of a chat stream."""
    CHUNK = "chunk"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """One item of the lazy chat sequence, with the text accumulated so far."""
    event_type: StreamEventType
    text: str
    accumulated_text: str

    @property
    def is_terminal(self) -> bool:
        return self.event_type is not StreamEventType.CHUNK


class StatusResponse(BaseModel):
    """Runner status: whether it is up and which models it can serve."""
    running: bool = False
    models: list[str] = Field(default_factory=list)

    @field_validator("models", mode="before")
    @classmethod
    def _model_names(cls, value: Any) -> list[str]:
        # Accept both ["llama3"] and Ollama's [{"name": "llama3", ...}]
        if value is None:
            return []
        names = []
        for item in value:
            if isinstance(item, dict):
                name = item.get("name") or item.get("model")
                if name:
                    names.append(str(name))
            else:
                names.append(str(item))
        return names


@dataclass
class ModelSelection:
    """Runner and model the next submission will use."""
    runner: str = DEFAULT_RUNNER
    model: str | None = None

    def select(self, runner: str, model: str) -> None:
        self.runner = runner
        self.model = model

    @property
    def label(self) -> str:
        return f"{self.runner}: {self.model}" if self.model else f"{self.runner}: -"
