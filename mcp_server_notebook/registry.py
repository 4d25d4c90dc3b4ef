"""
Tool registry: declares notebook tools and compiles their argument schemas.

Tools register through the ``@registry.tool(...)`` decorator, the same way the
tool modules register with an MCP server. ``compile()`` runs once at start-up
and freezes the table: every tool's pydantic model is turned into its
published JSON schema, and the resulting validator table is immutable.
"""

import inspect
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

import mcp.types as types
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mcp_server_notebook.errors import ToolNotFound, ValidationFailed
from mcp_server_notebook.observability import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

EMPTY_INPUT_SCHEMA = {"type": "object", "properties": {}, "additionalProperties": False}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    handler: Callable[..., Awaitable[str]]
    args_model: Optional[Type[BaseModel]] = None
    input_schema: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType(dict(EMPTY_INPUT_SCHEMA)))

    def as_mcp_tool(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=dict(self.input_schema))


def format_validation_errors(tool_name: str, error: PydanticValidationError) -> str:
    """List every failing field path with the constraint it violated."""
    details = []
    for err in error.errors():
        path = ".".join(str(part) for part in err.get("loc", ())) or "(root)"
        details.append(f"{path}: {err.get('msg')}")
    return f"Invalid parameters for {tool_name}: {', '.join(details)}"


class ToolRegistry:
    def __init__(self):
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._table: Optional[Mapping[str, ToolDefinition]] = None

    def tool(self, name: Optional[str] = None, args_model: Optional[Type[BaseModel]] = None, description: Optional[str] = None):
        """Register an async handler. The description defaults to the handler's docstring."""

        def decorator(func):
            if self._table is not None:
                raise RuntimeError("Tool registry is already compiled")
            tool_name = name or func.__name__
            if tool_name in self._pending:
                raise ValueError(f"Tool already registered: {tool_name}")
            self._pending[tool_name] = {
                "handler": func,
                "args_model": args_model,
                "description": description or inspect.cleandoc(func.__doc__ or ""),
            }
            return func

        return decorator

    def compile(self) -> Mapping[str, ToolDefinition]:
        """Build the immutable name -> definition table. Idempotent."""
        if self._table is not None:
            return self._table

        table = {}
        for tool_name, entry in self._pending.items():
            model = entry["args_model"]
            schema = model.model_json_schema() if model is not None else dict(EMPTY_INPUT_SCHEMA)
            table[tool_name] = ToolDefinition(
                name=tool_name,
                description=entry["description"],
                handler=entry["handler"],
                args_model=model,
                input_schema=MappingProxyType(schema),
            )
        self._table = MappingProxyType(table)
        logger.info("tool_registry_compiled", tools=len(table), schema_version=SCHEMA_VERSION)
        return self._table

    @property
    def table(self) -> Mapping[str, ToolDefinition]:
        return self.compile()

    def get(self, name: str) -> ToolDefinition:
        try:
            return self.table[name]
        except KeyError:
            raise ToolNotFound(name) from None

    def list_tools(self) -> List[types.Tool]:
        return [definition.as_mcp_tool() for definition in self.table.values()]

    def validate(self, definition: ToolDefinition, arguments: Any) -> Optional[BaseModel]:
        """
        Validate call arguments against the tool's model.

        Tools without a declared model accept any arguments and receive None.

        Raises:
            ValidationFailed: with a readable list of field paths and constraints
        """
        if definition.args_model is None:
            return None
        try:
            return definition.args_model.model_validate(arguments if arguments is not None else {})
        except PydanticValidationError as e:
            logger.warning("tool_validation_failed", tool=definition.name, errors=e.error_count())
            raise ValidationFailed(
                format_validation_errors(definition.name, e),
                context={"toolName": definition.name},
            ) from e
