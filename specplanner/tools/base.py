"""Tool abstraction.

A Tool is a named, schema-validated capability the model may invoke during a
run. The wrapper owns the validation contract:

- arguments are validated against the tool's pydantic input schema first
- the handler only ever sees a validated model instance
- failures come back as ToolError values, never as exceptions
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from specplanner.errors import ToolError, ToolErrorCode
from specplanner.validation import describe_validation_issues

ArgsT = TypeVar('ArgsT', bound=BaseModel)

ToolHandler = Callable[[ArgsT], Awaitable[Any]]


@dataclass(frozen=True)
class Tool(Generic[ArgsT]):
    """A validated tool.

    Attributes:
        name: Tool name as exposed to the model. Unique within a run.
        description: What the tool does, shown to the model.
        input_schema: Pydantic model the raw arguments must satisfy.
        handler: Async callable receiving the validated arguments. Returns a
            JSON-serializable payload or a ToolError.
        output_schema: Optional pydantic model describing the result payload.
    """

    name: str
    description: str | None
    input_schema: type[ArgsT]
    handler: ToolHandler
    output_schema: type[BaseModel] | None = None

    async def call(self, args: Any) -> Any | ToolError:
        """Validate ``args`` and run the handler.

        Returns:
            The handler's result or ToolError verbatim; INVALID_ARGS when the
            arguments do not match ``input_schema`` (the handler is not called).
        """
        try:
            parsed = self.input_schema.model_validate(args)
        except ValidationError as exc:
            return ToolError(
                ToolErrorCode.INVALID_ARGS,
                (
                    f'Invalid arguments for tool "{self.name}". '
                    f'Expected object matching {self.input_schema.__name__}. '
                    f'Issues: {describe_validation_issues(exc)}'
                ),
                exc.errors(include_url=False),
            )

        try:
            return await self.handler(parsed)
        except Exception as exc:  # noqa: BLE001 - boundary wrapper for tool failures
            return ToolError(
                ToolErrorCode.INTERNAL,
                f'Tool "{self.name}" failed: {exc}',
                {'exception': type(exc).__name__},
            )

    def json_schema(self) -> dict[str, Any]:
        """JSON Schema of the input arguments, as sent to backends."""
        return self.input_schema.model_json_schema(by_alias=True)


def make_tool(
    *,
    name: str,
    input_schema: type[ArgsT],
    handler: ToolHandler,
    description: str | None = None,
    output_schema: type[BaseModel] | None = None,
) -> Tool[ArgsT]:
    """Wrap a handler into a Tool with a uniform ``call`` entry point."""
    return Tool(
        name=name,
        description=description,
        input_schema=input_schema,
        handler=handler,
        output_schema=output_schema,
    )


class ToolRegistry:
    """Named tools, handed out to agents as ordered subsets."""

    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self._tools:
                raise ValueError(f'Duplicate tool name: {tool.name}')
            self._tools[tool.name] = tool

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def pick(self, names: Sequence[str]) -> list[Tool]:
        """Return the named tools in the order of ``names``, skipping unknown names."""
        return [self._tools[name] for name in names if name in self._tools]


def create_tool_registry(tools: Iterable[Tool]) -> ToolRegistry:
    return ToolRegistry(tools)


def tool_json_schema(tool: Tool) -> dict[str, Any]:
    return tool.json_schema()
