"""Strategies that recognize a tool call in free-form model text."""

import json
import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..models import ToolCallCandidate
from ...logger import get_logger

if TYPE_CHECKING:
    from ..registry import ToolRegistry

logger = get_logger(__name__)


def _candidate_from_object(obj: Any) -> Optional[ToolCallCandidate]:
    """Build a candidate from a decoded ``{"tool": ..., "parameters": ...}`` object."""
    if not isinstance(obj, dict):
        return None
    tool_name = obj.get("tool")
    if not isinstance(tool_name, str) or not tool_name:
        return None
    parameters = obj.get("parameters")
    return ToolCallCandidate(tool_name=tool_name, parameters=parameters if isinstance(parameters, dict) else {})


class ParsingStrategy(ABC):
    """One surface syntax for tool calls.

    Strategies return None when the text does not contain their syntax. They may raise
    on unexpected input; the parser treats that as a miss.
    """

    name: str = "strategy"

    @abstractmethod
    def parse(self, text: str) -> Optional[ToolCallCandidate]:
        """Try to extract a tool call from ``text``."""
        pass


class FencedJsonStrategy(ParsingStrategy):
    """A fenced ```json block whose body names a tool.

    Only the first ``json`` fence is considered. Its body must parse as strict JSON;
    malformed bodies are not repaired.
    """

    name = "fenced_json"

    _FENCE_PATTERN = re.compile(r"```json\s*\n?([\s\S]*?)\n?```")

    def parse(self, text: str) -> Optional[ToolCallCandidate]:
        match = self._FENCE_PATTERN.search(text)
        if not match:
            return None
        try:
            obj = json.loads(match.group(1))
        except json.JSONDecodeError as exc:
            logger.debug(f"Fenced block is not valid JSON: {exc}")
            return None
        return _candidate_from_object(obj)


class InlineJsonStrategy(ParsingStrategy):
    """A free-standing ``{"tool": ...}`` object anywhere in the text.

    Every opening brace is tried as the start of a JSON value, so objects with nested
    ``parameters`` are decoded whole.
    """

    name = "inline_json"

    def __init__(self) -> None:
        self._decoder = json.JSONDecoder()

    def parse(self, text: str) -> Optional[ToolCallCandidate]:
        if '"tool"' not in text:
            return None

        index = text.find("{")
        while index != -1:
            try:
                obj, _ = self._decoder.raw_decode(text, index)
            except json.JSONDecodeError:
                obj = None
            candidate = _candidate_from_object(obj)
            if candidate is not None:
                return candidate
            index = text.find("{", index + 1)
        return None


class TaggedRegionStrategy(ParsingStrategy):
    """``<tool_use><tool_name>X</tool_name><parameters>{...}</parameters></tool_use>``.

    A parameter body that is not a JSON object yields a call with empty parameters.
    """

    name = "tagged_region"

    _TAG_PATTERN = re.compile(
        r"<tool_use>\s*<tool_name>\s*(.*?)\s*</tool_name>\s*"
        r"(?:<parameters>([\s\S]*?)</parameters>\s*)?</tool_use>",
        re.DOTALL,
    )

    def parse(self, text: str) -> Optional[ToolCallCandidate]:
        match = self._TAG_PATTERN.search(text)
        if not match or not match.group(1):
            return None

        parameters: Dict[str, Any] = {}
        body = (match.group(2) or "").strip()
        if body:
            try:
                decoded = json.loads(body)
            except json.JSONDecodeError:
                logger.warning(f"Unparsable parameters for tagged call to '{match.group(1)}'; using empty parameters.")
                decoded = {}
            if isinstance(decoded, dict):
                parameters = decoded
        return ToolCallCandidate(tool_name=match.group(1), parameters=parameters)


class NaturalLanguageStrategy(ParsingStrategy):
    """Prose such as ``I want to use the weather tool with {"city": "Tokyo"}``.

    A JSON object following the phrase is taken as the parameters, even when empty.
    Without one, values are pulled out of the prose for each argument the registered
    tool declares (``city: Tokyo``, ``city = "Tokyo"``, ``city is Tokyo``). If no
    field can be recovered, or the tool is unknown and no object follows, there is no
    call.
    """

    name = "natural_language"

    _PHRASE_PATTERN = re.compile(r"\buse\s+the\s+[`'\"]?([A-Za-z_][\w\-]*)[`'\"]?\s+tool\b", re.IGNORECASE)

    def __init__(self, registry: Optional["ToolRegistry"] = None) -> None:
        self.registry = registry
        self._decoder = json.JSONDecoder()

    def parse(self, text: str) -> Optional[ToolCallCandidate]:
        match = self._PHRASE_PATTERN.search(text)
        if not match:
            return None

        tool_name = match.group(1)
        rest = text[match.end() :]

        trailing = self._trailing_object(rest)
        if trailing is not None:
            return ToolCallCandidate(tool_name=tool_name, parameters=trailing)

        tool = self.registry.get(tool_name) if self.registry is not None else None
        if tool is None or not tool.parameters:
            return None

        properties = tool.parameters.get("properties") or {}
        extracted: Dict[str, Any] = {}
        for field_name, prop in properties.items():
            raw_value = self._extract_field(rest, field_name)
            if raw_value is not None:
                extracted[field_name] = self._coerce(raw_value, prop if isinstance(prop, dict) else {})

        if not extracted:
            return None
        return ToolCallCandidate(tool_name=tool_name, parameters=extracted)

    def _trailing_object(self, text: str) -> Optional[Dict[str, Any]]:
        index = text.find("{")
        if index == -1:
            return None
        try:
            obj, _ = self._decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            return None
        return obj if isinstance(obj, dict) else None

    @staticmethod
    def _extract_field(text: str, field_name: str) -> Optional[str]:
        pattern = re.compile(
            rf"[`'\"]?\b{re.escape(field_name)}\b[`'\"]?\s*(?::|=|\bis\b|\bof\b)\s*"
            r"(?:\"([^\"]*)\"|'([^']*)'|([^\s,;]+))",
            re.IGNORECASE,
        )
        match = pattern.search(text)
        if not match:
            return None
        value = next(group for group in match.groups() if group is not None)
        # Unquoted values end at the sentence
        return value if match.group(3) is None else value.rstrip(".!?)")

    @staticmethod
    def _coerce(value: str, prop: Dict[str, Any]) -> Any:
        json_type = prop.get("type")
        try:
            if json_type == "integer":
                return int(value)
            if json_type == "number":
                return float(value)
        except ValueError:
            return value
        if json_type == "boolean":
            lowered = value.lower()
            if lowered in ("true", "yes"):
                return True
            if lowered in ("false", "no"):
                return False
        return value
