"""Re-export the abstract model transport shared by all transport adapters."""

from .base import ModelTransport, RawMessage

__all__ = [
    "ModelTransport",
    "RawMessage",
]
