"""
Chat history kept for the terminal front-end.
"""

from __future__ import annotations

from .models import ChatMessage
from .transcript import ChatTranscript

__all__ = ["ChatMessage", "ChatTranscript"]
