"""Ordered tool call detection over the parsing strategies."""

from typing import TYPE_CHECKING, List, Optional, Sequence

from ..models import ToolCallCandidate
from ...logger import get_logger
from .strategies import (
    FencedJsonStrategy,
    InlineJsonStrategy,
    NaturalLanguageStrategy,
    ParsingStrategy,
    TaggedRegionStrategy,
)

if TYPE_CHECKING:
    from ..registry import ToolRegistry

logger = get_logger(__name__)


class ToolCallParser:
    """Detects at most one tool call in a block of model text.

    Strategies are tried in order and the first one that yields a candidate wins. The
    default order is fenced JSON, inline JSON, tagged region, natural language.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[ParsingStrategy]] = None,
        registry: Optional["ToolRegistry"] = None,
    ) -> None:
        """
        Args:
            strategies: Custom strategy list. Defaults to the four built-in strategies.
            registry: Registry consulted by the natural-language strategy for argument
                shapes. Only used when ``strategies`` is not given.
        """
        if strategies is None:
            strategies = [
                FencedJsonStrategy(),
                InlineJsonStrategy(),
                TaggedRegionStrategy(),
                NaturalLanguageStrategy(registry),
            ]
        self.strategies: List[ParsingStrategy] = list(strategies)

    @property
    def strategy_names(self) -> List[str]:
        return [strategy.name for strategy in self.strategies]

    def without(self, name: str) -> "ToolCallParser":
        """Return a parser with the named strategy removed."""
        return ToolCallParser(strategies=[s for s in self.strategies if s.name != name])

    def detect(self, text: Optional[str]) -> Optional[ToolCallCandidate]:
        """Find the first tool call in ``text``.

        Args:
            text: Assistant text to inspect.

        Returns:
            The detected candidate, or None if no strategy matched. Never raises.
        """
        if not text or not text.strip():
            return None

        for strategy in self.strategies:
            try:
                candidate = strategy.parse(text)
            except Exception as exc:
                logger.warning(f"Parsing strategy '{strategy.name}' failed: {exc}")
                continue
            if candidate is not None:
                logger.debug(f"Strategy '{strategy.name}' detected a call to '{candidate.tool_name}'.")
                return candidate
        return None
