"""Expose the Gemini transport."""

from .core import GeminiTransport

__all__ = ["GeminiTransport"]
