"""
Tool registry.

Tools are registered once at start-up as immutable descriptors. Each declares
its parameters as typed ``ParamSpec`` entries; arguments are validated
against them before the handler runs, and anything the handler raises is
turned into an error-flagged ``ToolResult`` at the registry boundary.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from k8s_mcp.errors import KubernetesMCPError, NotFoundError, ValidationError, translate_operation_error
from k8s_mcp.mcp.results import ToolResult

logger = structlog.get_logger()

ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


class ParamKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


_PY_TYPES: dict[ParamKind, tuple[type, ...]] = {
    ParamKind.STRING: (str,),
    ParamKind.INTEGER: (int,),
    ParamKind.NUMBER: (int, float),
    ParamKind.BOOLEAN: (bool,),
    ParamKind.ARRAY: (list, tuple),
    ParamKind.OBJECT: (dict,),
}


@dataclass(frozen=True)
class ParamSpec:
    name: str
    kind: ParamKind = ParamKind.STRING
    required: bool = False
    description: str = ""
    default: Any = None
    enum: tuple[str, ...] | None = None

    def validate(self, value: Any) -> Any:
        # bool is a subclass of int; reject it for numeric kinds
        if isinstance(value, bool) and self.kind != ParamKind.BOOLEAN:
            raise ValidationError(f"Parameter '{self.name}' must be of type {self.kind.value}")
        if not isinstance(value, _PY_TYPES[self.kind]):
            raise ValidationError(f"Parameter '{self.name}' must be of type {self.kind.value}")
        if self.enum is not None and value not in self.enum:
            raise ValidationError(f"Parameter '{self.name}' must be one of: {', '.join(self.enum)}")
        return value

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.kind.value}
        if self.description:
            schema["description"] = self.description
        if self.default is not None:
            schema["default"] = self.default
        if self.enum is not None:
            schema["enum"] = list(self.enum)
        if self.kind == ParamKind.ARRAY:
            schema["items"] = {"type": "string"}
        return schema


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    handler: ToolHandler
    params: tuple[ParamSpec, ...] = field(default_factory=tuple)
    destructive: bool = False

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: p.to_schema() for p in self.params},
            "required": [p.name for p in self.params if p.required],
        }

    def summary(self) -> dict[str, Any]:
        summary = {"name": self.name, "description": self.description, "inputSchema": self.input_schema}
        if self.destructive:
            summary["annotations"] = {"destructiveHint": True}
        return summary

    def validate_arguments(self, arguments: dict[str, Any] | None) -> dict[str, Any]:
        """Check ``arguments`` against the declared params and fill in defaults."""
        arguments = dict(arguments or {})
        validated: dict[str, Any] = {}
        for param in self.params:
            value = arguments.pop(param.name, None)
            if value is None:
                if param.required:
                    raise ValidationError(f"Missing required parameter: {param.name}")
                if param.default is not None:
                    validated[param.name] = param.default
                continue
            validated[param.name] = param.validate(value)

        if arguments:
            logger.debug("ignoring_unknown_arguments", tool=self.name, arguments=sorted(arguments))
        return validated


class ToolRegistry:
    """
    Name to tool table.

    Registering a name that already exists replaces the earlier descriptor
    (last registration wins) and logs a warning.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            logger.warning("tool_overwritten", tool=descriptor.name)
        self._tools[descriptor.name] = descriptor

    def register_all(self, descriptors: list[ToolDescriptor]) -> None:
        for descriptor in descriptors:
            self.register(descriptor)
        logger.info("tools_registered", count=len(self._tools))

    def list(self) -> list[dict[str, Any]]:
        return [tool.summary() for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def destructive_names(self) -> list[str]:
        return [name for name, tool in self._tools.items() if tool.destructive]

    def get(self, name: str) -> ToolDescriptor:
        try:
            return self._tools[name]
        except KeyError:
            raise NotFoundError(f"Tool '{name}' not found") from None

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def invoke(self, name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """
        Run a tool by name.

        Raises NotFoundError for an unknown name. Every other failure,
        including argument validation, comes back as an error-flagged result.
        """
        tool = self.get(name)
        start = time.perf_counter()
        try:
            validated = tool.validate_arguments(arguments)
            result = await tool.handler(validated)
        except KubernetesMCPError as e:
            logger.warning("tool_failed", tool=name, error=e.message, error_type=type(e).__name__)
            return ToolResult.error(f"Error: {e.message}")
        except Exception as e:
            error = translate_operation_error(e)
            logger.error("tool_error", tool=name, error=str(e), error_type=type(e).__name__)
            return ToolResult.error(f"Error: {error.message}")

        logger.info(
            "tool_executed",
            tool=name,
            is_error=result.is_error,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return result
