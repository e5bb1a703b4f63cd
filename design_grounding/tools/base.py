"""
Base definitions for image tools.

This module defines the parameter schema types for the image tools the
model may call, and the ImageTool class that pairs a schema with the
operation class its output is judged against.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from design_grounding.models.validation import ExpectedOperation


class ParameterType(Enum):
    """Supported parameter types for tool definitions."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


def json_type_name(value: Any) -> str:
    """JSON type name of a decoded value, as reported in schema errors."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if value is None:
        return "null"
    return type(value).__name__


def _matches_type(value: Any, expected: ParameterType) -> bool:
    actual = json_type_name(value)
    if expected == ParameterType.INTEGER:
        return actual == "number" and float(value).is_integer()
    return actual == expected.value


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass
class ToolParameter:
    """
    Definition of a single tool parameter.

    Used to build the JSON Schema for tool definitions that are
    sent to the model for function calling, and to run the schema phase
    of parameter validation.
    """
    name: str
    type: ParameterType
    description: str
    required: bool = False
    default: Optional[Any] = None
    enum: Optional[List[Any]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    items_type: Optional[ParameterType] = None  # For array types
    item_properties: Optional[List["ToolParameter"]] = None  # For arrays of objects

    def to_schema(self) -> Dict[str, Any]:
        """Convert to JSON Schema format."""
        schema: Dict[str, Any] = {
            "type": self.type.value,
            "description": self.description,
        }

        if self.enum:
            schema["enum"] = self.enum

        if self.minimum is not None:
            schema["minimum"] = self.minimum

        if self.maximum is not None:
            schema["maximum"] = self.maximum

        if self.default is not None:
            schema["default"] = self.default

        if self.type == ParameterType.ARRAY and self.items_type:
            items: Dict[str, Any] = {"type": self.items_type.value}
            if self.item_properties:
                items["properties"] = {p.name: p.to_schema() for p in self.item_properties}
                items["required"] = [p.name for p in self.item_properties if p.required]
            schema["items"] = items

        return schema

    def check(self, value: Any) -> List[str]:
        """
        Schema errors for one supplied value.

        Type mismatches short-circuit the remaining checks for the value.
        """
        if not _matches_type(value, self.type):
            return [
                f"Parameter '{self.name}' has wrong type. "
                f"Expected {self.type.value}, got {json_type_name(value)}"
            ]

        errors = []

        if self.enum and value not in self.enum:
            allowed = ", ".join(_format_value(v) for v in self.enum)
            errors.append(
                f"Parameter '{self.name}' has invalid value '{_format_value(value)}'. "
                f"Must be one of: {allowed}"
            )

        if json_type_name(value) == "number":
            if self.minimum is not None and value < self.minimum:
                errors.append(
                    f"Parameter '{self.name}' is below minimum. "
                    f"Value: {_format_value(value)}, Minimum: {_format_value(self.minimum)}"
                )
            if self.maximum is not None and value > self.maximum:
                errors.append(
                    f"Parameter '{self.name}' is above maximum. "
                    f"Value: {_format_value(value)}, Maximum: {_format_value(self.maximum)}"
                )

        if isinstance(value, list) and self.item_properties:
            required = [p.name for p in self.item_properties if p.required]
            for i, item in enumerate(value):
                if not isinstance(item, dict):
                    errors.append(
                        f"Array item {i} in '{self.name}' has wrong type. "
                        f"Expected object, got {json_type_name(item)}"
                    )
                    continue
                for field_name in required:
                    if item.get(field_name) is None:
                        errors.append(f"Array item {i} in '{self.name}' missing required field: {field_name}")

        return errors


@dataclass
class ToolSchema:
    """
    Complete schema for a tool definition.

    This represents the full tool definition that gets sent to
    the model for function calling support.
    """
    name: str
    description: str
    parameters: List[ToolParameter] = field(default_factory=list)

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.parameters if p.required]

    def to_openai_format(self) -> Dict[str, Any]:
        """
        Convert to OpenAI function calling format.

        Returns a dict suitable for the 'tools' parameter in chat completion.
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {p.name: p.to_schema() for p in self.parameters},
                    "required": self.required,
                },
            },
        }


class ImageTool:
    """
    An image operation the model may call.

    Execution is delegated to a ToolExecutor; the tool itself only carries
    its schema and the kind of change its output should show.
    """

    def __init__(
        self,
        name: str,
        description: str,
        parameters: Optional[List[ToolParameter]] = None,
        expected_operation: ExpectedOperation = ExpectedOperation.COLOR_CHANGE,
    ):
        """
        Initialize the tool.

        Args:
            name: Unique identifier for the tool
            description: What the tool does, as shown to the model
            parameters: List of parameter definitions
            expected_operation: Operation class used by result validation
        """
        self.name = name
        self.description = description
        self.parameters = parameters or []
        self.expected_operation = expected_operation
        self._schema: Optional[ToolSchema] = None

    @property
    def schema(self) -> ToolSchema:
        """Get the tool schema."""
        if self._schema is None:
            self._schema = ToolSchema(
                name=self.name,
                description=self.description,
                parameters=self.parameters,
            )
        return self._schema

    @property
    def mutates_image(self) -> bool:
        return self.expected_operation.mutates_pixels

    def get_openai_schema(self) -> Dict[str, Any]:
        """Get OpenAI-compatible tool definition."""
        return self.schema.to_openai_format()

    def validate_input(self, arguments: Dict[str, Any]) -> List[str]:
        """
        Run the schema phase over raw model arguments.

        Unknown keys are ignored. A key explicitly set to null counts as
        missing.

        Returns:
            Error messages, empty when the arguments fit the schema
        """
        errors = []
        for field_name in self.schema.required:
            if arguments.get(field_name) is None:
                errors.append(f"Missing required parameter: {field_name}")

        by_name = {p.name: p for p in self.parameters}
        for key, value in arguments.items():
            param = by_name.get(key)
            if param is None or value is None:
                continue
            errors.extend(param.check(value))

        return errors

    def with_defaults(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of arguments with schema defaults filled in."""
        filled = dict(arguments)
        for param in self.parameters:
            if filled.get(param.name) is None and param.default is not None:
                filled[param.name] = param.default
        return filled

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"
