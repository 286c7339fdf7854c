from typing import Any, Callable, Dict, Optional, Type

from pydantic import BaseModel


class ToolDefinition(BaseModel):
    """
    Represents a tool that the model can request by name.

    Attributes:
        name: The unique name of the tool.
        description: A brief description of what the tool does.
        func: The callable implementing the tool. May be sync or async, and may raise.
        parameters: JSON schema of the tool's arguments, as shown to the model and used
                    for natural-language field extraction. None means "takes no declared
                    arguments".
        args_model: Optional Pydantic model used for validating and coercing arguments.
    """

    name: str
    description: str
    func: Callable[..., Any]
    parameters: Optional[Dict[str, Any]] = None
    args_model: Optional[Type[BaseModel]] = None

    @property
    def has_argument_shape(self) -> bool:
        """True if the tool declares arguments that inputs are validated against."""
        return self.args_model is not None
