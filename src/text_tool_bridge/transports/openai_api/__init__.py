"""Expose the OpenAI chat completions transport."""

from .core import OpenAITransport

__all__ = ["OpenAITransport"]
