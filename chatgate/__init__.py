"""Authenticated chat gateway in front of a hosted LLM inference endpoint."""

__version__ = "1.0.0"
