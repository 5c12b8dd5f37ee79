"""
Chat Package
============

- handler.py: POST /api/chat processing and the streaming relay
- inference.py: Workers AI client
"""

from .handler import build_messages, handle_chat_request, relay_response
from .inference import WorkersAI

__all__ = ["WorkersAI", "build_messages", "handle_chat_request", "relay_response"]
