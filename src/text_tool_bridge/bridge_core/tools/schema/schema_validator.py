from typing import Any, Dict, List, Literal, Optional, Set, Tuple, Type, cast

from pydantic import BaseModel, Field, create_model

from ...exceptions import ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)

_JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "array": list,
    "object": dict,
}


class SchemaValidator:
    """
    Helper class for validating, sanitizing and interpreting tool argument schemas.
    """

    @staticmethod
    def assert_no_recursive_refs(schema: Dict[str, Any]) -> None:
        """
        Checks if the schema contains recursive references by traversing the graph.

        Args:
            schema: The JSON schema to check.

        Raises:
            ToolValidationError: If a recursive reference is found.
        """
        defs = schema.get("$defs", {}) or schema.get("definitions", {})

        def check(node: Any, path: Set[str]) -> None:
            if isinstance(node, dict):
                if "$ref" in node:
                    ref = node["$ref"]
                    if ref in path:
                        msg = (
                            f"Recursive structure detected: {ref}. "
                            "Recursive structures are not allowed in tool inputs. "
                            "Use parent_id, lists, or a workflow loop instead."
                        )
                        logger.error(msg)
                        raise ToolValidationError(msg)

                    # Local refs look like #/$defs/MyModel
                    if ref.startswith("#"):
                        parts = ref.split("/")
                        if len(parts) >= 3:
                            def_name = parts[-1]
                            if def_name in defs:
                                check(defs[def_name], path | {ref})
                    return

                for v in node.values():
                    check(v, path)
            elif isinstance(node, list):
                for item in node:
                    check(item, path)

        check(schema, set())

    @staticmethod
    def sanitize_schema(schema: Any) -> Any:
        """
        Cleans up a schema before it is shown to the model or used for extraction.
        Removes $defs, $schema, $id, title.
        Simplifies Optional fields (anyOf with null).
        Enforces additionalProperties: false for objects.

        Keys of a ``properties`` mapping are argument names, not schema keywords, so an
        argument called ``title`` survives sanitizing.

        Args:
            schema: The JSON schema to sanitize.

        Returns:
            The sanitized schema.
        """
        if not isinstance(schema, dict):
            return schema

        new_schema = schema.copy()

        for key in ["$defs", "$schema", "$id", "title", "definitions"]:
            new_schema.pop(key, None)

        if "anyOf" in new_schema:
            non_null = [x for x in new_schema["anyOf"] if not (isinstance(x, dict) and x.get("type") == "null")]

            if len(non_null) == 1 and isinstance(non_null[0], dict):
                # Parent description wins over the branch description
                merged = non_null[0].copy()
                if "description" in new_schema:
                    merged["description"] = new_schema["description"]
                if "default" in new_schema:
                    merged["default"] = new_schema["default"]
                return SchemaValidator.sanitize_schema(merged)

        if new_schema.get("type") == "object":
            if "additionalProperties" not in new_schema:
                new_schema["additionalProperties"] = False

        for key, value in new_schema.items():
            if key == "properties" and isinstance(value, dict):
                new_schema[key] = {name: SchemaValidator.sanitize_schema(prop) for name, prop in value.items()}
            elif isinstance(value, dict):
                new_schema[key] = SchemaValidator.sanitize_schema(value)
            elif isinstance(value, list):
                new_schema[key] = [
                    SchemaValidator.sanitize_schema(item) if isinstance(item, dict) else item for item in value
                ]

        return new_schema

    @staticmethod
    def type_label(prop: Dict[str, Any]) -> str:
        """Short human-readable type name of a property schema, e.g. ``string``."""
        json_type = prop.get("type")
        if isinstance(json_type, list):
            json_type = next((t for t in json_type if t != "null"), None)
        if isinstance(json_type, str) and json_type in _JSON_TYPES:
            return json_type
        if "enum" in prop:
            return "enum"
        return "unknown"

    @staticmethod
    def describe_fields(schema: Optional[Dict[str, Any]]) -> List[Tuple[str, str, bool]]:
        """List ``(name, type label, required)`` for every top-level property of ``schema``."""
        if not schema:
            return []
        properties = schema.get("properties") or {}
        required = set(schema.get("required") or [])
        return [
            (name, SchemaValidator.type_label(prop if isinstance(prop, dict) else {}), name in required)
            for name, prop in properties.items()
        ]

    @staticmethod
    def model_from_schema(name: str, schema: Optional[Dict[str, Any]]) -> Optional[Type[BaseModel]]:
        """
        Builds a Pydantic model that validates arguments against an object schema.

        Only the top level is typed: primitive JSON types map to their Python
        counterparts, ``enum`` maps to a ``Literal``, nested objects and arrays are
        checked as ``dict`` and ``list``. Properties not listed in ``required`` become
        optional with their schema default (or None).

        Args:
            name: Tool name, used to name the generated model.
            schema: The tool's argument schema.

        Returns:
            The generated model, or None if the schema declares no properties.
        """
        if not schema or not isinstance(schema.get("properties"), dict):
            return None

        required = set(schema.get("required") or [])
        fields: Dict[str, Any] = {}
        for prop_name, prop in schema["properties"].items():
            prop = prop if isinstance(prop, dict) else {}
            annotation = SchemaValidator._annotation_for(prop)
            description = prop.get("description")
            if prop_name in required:
                fields[prop_name] = (annotation, Field(..., description=description))
            else:
                fields[prop_name] = (Optional[annotation], Field(default=prop.get("default"), description=description))

        return create_model(f"{name}Params", **cast(Dict[str, Any], fields))

    @staticmethod
    def _annotation_for(prop: Dict[str, Any]) -> Any:
        enum_values = prop.get("enum")
        if isinstance(enum_values, list) and enum_values:
            return Literal[tuple(enum_values)]  # type: ignore[misc]
        json_type = prop.get("type")
        if isinstance(json_type, list):
            json_type = next((t for t in json_type if t != "null"), None)
        return _JSON_TYPES.get(json_type, Any) if isinstance(json_type, str) else Any
