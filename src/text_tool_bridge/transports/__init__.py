"""Collect concrete model transports."""

from .gemini import GeminiTransport
from .openai_api import OpenAITransport

__all__ = [
    "GeminiTransport",
    "OpenAITransport",
]
