"""Tool registry and helper utilities."""

import inspect
from typing import Any, Callable, Dict, List, Optional, Type, Union, cast

import jsonref  # type: ignore
from pydantic import BaseModel, create_model

from ..models import ToolDefinition
from ..schema import SchemaValidator, ToolParameterFactory
from ...exceptions import ToolNotFoundError, ToolRegistrationError, ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)

_TOOL_PROMPT_TEMPLATE = """## Available Tools

You have access to the following tools that you can use to help with your tasks:

{tool_lines}

When you need to use a tool, output a JSON code block with the following format:
```json
{{
  "tool": "tool_name",
  "parameters": {{
    "param1": "value1",
    "param2": "value2"
  }}
}}
```

After I execute the tool, I will provide you with the result, and you can continue with your response."""


class ToolRegistry:
    """
    A central registry of the tools a model may request in its text output.

    The registry maps tool names to their definitions, renders the tool catalogue
    that is appended to the system prompt, and provides the argument shapes used for
    validation and natural-language field extraction.
    """

    def __init__(self) -> None:
        """Initialize an empty ToolRegistry."""
        self.tools: Dict[str, ToolDefinition] = {}

    def register(
        self,
        name_or_tool: Union[str, ToolDefinition, Callable],
        description: Optional[str] = None,
        func: Optional[Callable] = None,
        parameters: Optional[Union[Dict[str, Any], Type[BaseModel]]] = None,
    ) -> ToolDefinition:
        """
        Register a new tool.

        A tool can be registered as a ready-made `ToolDefinition`, as a plain function
        (name, description and argument shape are derived from its signature and
        docstring), or from individual components. In the last case ``parameters`` may
        be a JSON schema dict or a Pydantic model class.

        Args:
            name_or_tool: Either a `ToolDefinition` object, the name of the tool (str), or a Callable.
            description: What the tool does. Required if ``parameters`` is given explicitly.
            func: The callable implementing the tool. Required if `name_or_tool` is a string.
            parameters: The argument shape. If None, it is inferred from `func`.

        Returns:
            The registered definition.

        Raises:
            ToolRegistrationError: If arguments are missing or the tool already exists.
            ToolValidationError: If the function or schema cannot describe its arguments.
        """
        if isinstance(name_or_tool, ToolDefinition):
            tool = self._complete_definition(name_or_tool)
        elif callable(name_or_tool):
            tool = self._generate_tool_definition(name_or_tool, description=description)
        else:
            if func is None:
                raise ToolRegistrationError("If passing name as string, func is required.")

            if parameters is None:
                tool = self._generate_tool_definition(func, name=name_or_tool, description=description)
            else:
                if description is None:
                    raise ToolRegistrationError("If passing name and parameters, description is required.")
                tool = self._definition_from_shape(name_or_tool, description, func, parameters)

        if tool.name in self.tools:
            msg = f"Tool '{tool.name}' is already registered."
            logger.error(msg)
            raise ToolRegistrationError(msg)

        self.tools[tool.name] = tool
        logger.info(f"Successfully registered tool: '{tool.name}'")
        return tool

    def unregister(self, tool_name: str) -> None:
        """Unregister a tool from the registry.

        Args:
            tool_name: The name of the tool to remove.

        Raises:
            ToolNotFoundError: If the tool does not exist in the registry.
        """
        if tool_name in self.tools:
            del self.tools[tool_name]
            logger.info(f"Successfully unregistered tool: '{tool_name}'")
        else:
            raise ToolNotFoundError(f"Tool '{tool_name}' not found in the registry.")

    def tool(self, func: Callable) -> Callable:
        """A decorator to turn a function into a tool.

        Args:
            func: The function to decorate.

        Returns:
            The original function, after registering it as a tool.
        """
        self.register(func)
        return func

    def get(self, tool_name: str) -> Optional[ToolDefinition]:
        """Look up a tool by name."""
        return self.tools.get(tool_name)

    def restricted(
        self, allowed_tools: Optional[List[str]] = None, disallowed_tools: Optional[List[str]] = None
    ) -> "ToolRegistry":
        """
        Return a new registry holding only the permitted tools.

        Args:
            allowed_tools: Names to keep. Empty or None keeps every tool.
            disallowed_tools: Names to drop, even when they are also allowed.

        Returns:
            A separate registry; registering into it leaves this one untouched.
        """
        allowed = set(allowed_tools or [])
        denied = set(disallowed_tools or [])
        scoped = ToolRegistry()
        scoped.tools = {
            name: tool
            for name, tool in self.tools.items()
            if (not allowed or name in allowed) and name not in denied
        }
        return scoped

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self.tools

    def __len__(self) -> int:
        return len(self.tools)

    @property
    def names(self) -> List[str]:
        """Registered tool names in registration order."""
        return list(self.tools)

    @property
    def descriptions(self) -> Dict[str, str]:
        """Mapping of tool name to description."""
        return {name: tool.description for name, tool in self.tools.items()}

    @property
    def implementations(self) -> Dict[str, Callable]:
        """Returns a dictionary mapping tool names to their callables."""
        return {name: tool.func for name, tool in self.tools.items()}

    @property
    def tool_prompt(self) -> str:
        """The tool catalogue shown to the model, or an empty string without tools.

        Each tool is listed with its description and parameters, followed by the JSON
        code block format the parser recognizes first.
        """
        if not self.tools:
            return ""
        return _TOOL_PROMPT_TEMPLATE.format(tool_lines="\n".join(self._tool_line(t) for t in self.tools.values()))

    @staticmethod
    def _tool_line(tool: ToolDefinition) -> str:
        summary = " ".join(tool.description.strip().split("\n\n")[0].split())
        line = f"- {tool.name}: {summary}"
        fields = SchemaValidator.describe_fields(tool.parameters)
        if fields:
            params = ", ".join(
                f"{name}: {label}{'' if required else ' (optional)'}" for name, label, required in fields
            )
            line += f" [Parameters: {params}]"
        return line

    def _complete_definition(self, tool: ToolDefinition) -> ToolDefinition:
        """Derive a validation model for definitions that only carry a JSON schema."""
        if tool.args_model is None and tool.parameters:
            return tool.model_copy(update={"args_model": SchemaValidator.model_from_schema(tool.name, tool.parameters)})
        return tool

    def _definition_from_shape(
        self,
        name: str,
        description: str,
        func: Callable,
        parameters: Union[Dict[str, Any], Type[BaseModel]],
    ) -> ToolDefinition:
        if isinstance(parameters, type) and issubclass(parameters, BaseModel):
            return ToolDefinition(
                name=name,
                description=description,
                func=func,
                parameters=self._schema_from_model(parameters),
                args_model=parameters,
            )
        if not isinstance(parameters, dict):
            raise ToolRegistrationError(
                f"Parameters of tool '{name}' must be a JSON schema dict or a Pydantic model class."
            )
        schema = SchemaValidator.sanitize_schema(parameters)
        return ToolDefinition(
            name=name,
            description=description,
            func=func,
            parameters=schema,
            args_model=SchemaValidator.model_from_schema(name, schema),
        )

    def _generate_tool_definition(
        self, func: Callable, name: Optional[str] = None, description: Optional[str] = None
    ) -> ToolDefinition:
        """Generate a ToolDefinition from a callable function.

        Args:
            func: The function to generate a definition for.
            name: Optional name override for the tool.
            description: Optional description override for the tool.

        Returns:
            A ToolDefinition object containing the tool's metadata and schema.

        Raises:
            ToolValidationError: If the function is missing a docstring or parameter descriptions.
        """
        tool_name = name or func.__name__
        if description is None:
            description = self._get_docstring_from_func(func, tool_name)

        signature = inspect.signature(func)
        fields = self._build_fields(signature, tool_name)

        # create_model expects **field_definitions: Any
        dynamic_params_model = create_model(f"{tool_name}Params", **cast(Dict[str, Any], fields))

        return ToolDefinition(
            name=tool_name,
            description=description,
            func=func,
            parameters=self._schema_from_model(dynamic_params_model),
            args_model=dynamic_params_model,
        )

    @staticmethod
    def _schema_from_model(model: Type[BaseModel]) -> Dict[str, Any]:
        raw_schema = model.model_json_schema()
        SchemaValidator.assert_no_recursive_refs(raw_schema)

        # proxies=False ensures we get a plain dict back, not JsonRef objects
        parameters_schema = jsonref.replace_refs(raw_schema, proxies=False)
        return cast(Dict[str, Any], SchemaValidator.sanitize_schema(parameters_schema))

    @staticmethod
    def _get_docstring_from_func(func: Callable, tool_name: str) -> str:
        doc = inspect.getdoc(func)
        if not doc:
            msg = f"Tool '{tool_name}' missing docstring. The model needs a description of what the tool does."
            logger.error(msg)
            raise ToolValidationError(msg)
        return doc

    @staticmethod
    def _build_fields(signature: inspect.Signature, tool_name: str) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for param_name, param in signature.parameters.items():
            if param_name == "self":
                continue
            ft = ToolParameterFactory.build_field_tuple(param_name=param_name, param=param, tool_name=tool_name)
            fields[param_name] = (ft.annotation, ft.field)
        return fields
