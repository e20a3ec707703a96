"""
Streaming chat client for a local Ollama chat UI.
"""

from __future__ import annotations

__version__ = "0.1.0"
