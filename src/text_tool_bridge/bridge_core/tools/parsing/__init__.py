"""Tool call detection in free-form model text."""

from .parser import ToolCallParser
from .strategies import (
    FencedJsonStrategy,
    InlineJsonStrategy,
    NaturalLanguageStrategy,
    ParsingStrategy,
    TaggedRegionStrategy,
)

__all__ = [
    "ToolCallParser",
    "ParsingStrategy",
    "FencedJsonStrategy",
    "InlineJsonStrategy",
    "TaggedRegionStrategy",
    "NaturalLanguageStrategy",
]
