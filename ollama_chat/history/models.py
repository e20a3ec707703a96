# ollama_chat/history/models.py
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant"]


class ChatMessage(BaseModel):
    """
    One bubble of the chat window.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    text: str = ""
    model: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    complete: bool = False
    errored: bool = False
