"""Runtime adapter interface.

This module defines the narrow contract used by orchestration code. Two layers:

- AgentRuntime: what agents call. ``generate_text`` runs a bounded tool loop,
  ``generate_object`` is a single schema-constrained call. Neither raises;
  failures come back as AppError.
- ChatBackend: one model round trip (messages + tool specs in, text and/or
  tool calls out). Backends are vendor specific and may raise; the runtime
  converts anything they raise into LLM_ERROR.

Every backend (HTTP client, vendor SDK, scripted test double) plugs into the
same runtime, so agents and tests swap backends without code changes.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, Literal, Sequence, TypeVar, Union

from pydantic import BaseModel

from specplanner.errors import AppError

if TYPE_CHECKING:
    from specplanner.tools.base import Tool

AgentRole = Literal['system', 'user', 'assistant', 'tool']
FinishReason = Literal['stop', 'length', 'tool-calls', 'content-filter', 'error', 'other']

DEFAULT_MAX_STEPS = 20

SchemaT = TypeVar('SchemaT', bound=BaseModel)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ToolCallPart:
    call_id: str
    tool_name: str
    args: Any


@dataclass(frozen=True)
class ToolResultPart:
    call_id: str
    tool_name: str
    result: Any
    is_error: bool = False


MessagePart = Union[TextPart, ToolCallPart, ToolResultPart]


@dataclass(frozen=True)
class AgentMessage:
    """A role-tagged conversation entry.

    System messages carry a plain directive string. User, assistant and tool
    messages carry either a string or an ordered tuple of parts.
    """

    role: AgentRole
    content: str | tuple[MessagePart, ...]

    @classmethod
    def system(cls, text: str) -> 'AgentMessage':
        return cls(role='system', content=text)

    @classmethod
    def user(cls, text: str) -> 'AgentMessage':
        return cls(role='user', content=text)

    @classmethod
    def assistant(cls, text: str) -> 'AgentMessage':
        return cls(role='assistant', content=text)

    @property
    def parts(self) -> tuple[MessagePart, ...]:
        if isinstance(self.content, str):
            return (TextPart(self.content),) if self.content else ()
        return self.content

    @property
    def text(self) -> str:
        return ''.join(part.text for part in self.parts if isinstance(part, TextPart))


# ---------------------------------------------------------------------------
# Run results
# ---------------------------------------------------------------------------


def _add_optional(a: int | None, b: int | None) -> int | None:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


@dataclass(frozen=True)
class RuntimeUsage:
    """Best-effort token usage summary (provider-dependent)."""

    input_tokens: int | None = None
    output_tokens: int | None = None

    @property
    def total_tokens(self) -> int | None:
        return _add_optional(self.input_tokens, self.output_tokens)

    def __add__(self, other: 'RuntimeUsage') -> 'RuntimeUsage':
        return RuntimeUsage(
            input_tokens=_add_optional(self.input_tokens, other.input_tokens),
            output_tokens=_add_optional(self.output_tokens, other.output_tokens),
        )


@dataclass(frozen=True)
class RuntimeToolCall:
    tool_name: str
    args: Any
    call_id: str | None = None


@dataclass(frozen=True)
class RuntimeToolResult:
    tool_name: str
    result: Any
    call_id: str | None = None
    is_error: bool = False


@dataclass(frozen=True)
class RuntimeStep:
    """One iteration of the tool loop, numbered from 1."""

    step_number: int
    text: str | None = None
    finish_reason: FinishReason | None = None
    usage: RuntimeUsage | None = None
    tool_calls: tuple[RuntimeToolCall, ...] = ()
    tool_results: tuple[RuntimeToolResult, ...] = ()


@dataclass(frozen=True)
class GenerateTextResult:
    text: str
    steps: tuple[RuntimeStep, ...]
    usage: RuntimeUsage


@dataclass(frozen=True)
class GenerateObjectResult(Generic[SchemaT]):
    object: SchemaT
    usage: RuntimeUsage


# ---------------------------------------------------------------------------
# Per-step control
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ForcedTool:
    """Tool choice that forces one specific tool."""

    tool_name: str


ToolChoice = Union[Literal['auto', 'none', 'required'], ForcedTool]


@dataclass(frozen=True)
class PrepareStepContext:
    step_number: int
    steps: tuple[RuntimeStep, ...]
    messages: tuple[AgentMessage, ...]


@dataclass(frozen=True)
class StepOverrides:
    """Adjustments returned by a prepare_step hook. Apply to one step only.

    Attributes:
        active_tools: Names of the tools offered this step (subset, in tool order).
        tool_choice: Tool choice policy for this step.
        system: Replaces the system directive for this step.
        messages: Replaces the message list sent for this step.
    """

    active_tools: Sequence[str] | None = None
    tool_choice: ToolChoice | None = None
    system: str | None = None
    messages: Sequence[AgentMessage] | None = None


PrepareStep = Callable[[PrepareStepContext], Union[StepOverrides, None, Awaitable[Union[StepOverrides, None]]]]
StopCondition = Callable[[Sequence[RuntimeStep]], bool]


class AgentRuntime(ABC):
    """Backend-agnostic model conversation runner."""

    @abstractmethod
    async def generate_text(
        self,
        messages: Sequence[AgentMessage],
        *,
        tools: Sequence[Tool] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        max_steps: int | None = None,
        prepare_step: PrepareStep | None = None,
        stop_when: StopCondition | None = None,
    ) -> GenerateTextResult | AppError:
        """Run the conversation, dispatching tool calls until the model stops."""
        raise NotImplementedError

    @abstractmethod
    async def generate_object(
        self,
        messages: Sequence[AgentMessage],
        schema: type[SchemaT],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerateObjectResult[SchemaT] | AppError:
        """Generate one object constrained to ``schema``. No tool loop."""
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------


class BackendError(RuntimeError):
    """Raised by backends when a provider response cannot be interpreted."""


@dataclass(frozen=True)
class ToolSpec:
    """Tool definition as sent to a backend."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ChatRequest:
    """
    A single model round trip.

    Attributes:
        messages: Full conversation for this step.
        tools: Tools offered this step.
        tool_choice: Optional tool choice policy.
        temperature: Sampling temperature.
        max_tokens: Output token cap.
        response_schema: Optional JSON Schema enforcing output structure.
        response_schema_name: Name reported to the provider for ``response_schema``.
    """

    messages: tuple[AgentMessage, ...]
    tools: tuple[ToolSpec, ...] = ()
    tool_choice: ToolChoice | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    response_schema: dict[str, Any] | None = None
    response_schema_name: str = 'structured_output'


@dataclass(frozen=True)
class ChatResponse:
    """Normalized backend output.

    Attributes:
        text: Assistant text (may be empty when only tool calls were made).
        tool_calls: Tool calls requested by the model, in provider order.
        finish_reason: Normalized finish reason.
        usage: Best-effort token usage.
        raw: Provider payload, kept for debugging.
    """

    text: str = ''
    tool_calls: tuple[RuntimeToolCall, ...] = ()
    finish_reason: FinishReason = 'stop'
    usage: RuntimeUsage = RuntimeUsage()
    raw: dict[str, Any] = field(default_factory=dict)


def serialize_tool_result(result: Any) -> str:
    """Render a tool result payload as the string content providers expect."""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json(by_alias=True, exclude_none=True)
    return json.dumps(result, ensure_ascii=False, default=str)


def parse_tool_arguments(raw: Any) -> Any:
    """Decode provider tool arguments.

    Providers send arguments as a JSON string. Undecodable strings are passed
    through unchanged so the tool's own validation reports the problem to the
    model.
    """
    if not isinstance(raw, str):
        return raw
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class ChatBackend(ABC):
    """Model inference adapter for a single round trip."""

    @abstractmethod
    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Send one request to the model."""
        raise NotImplementedError
