"""Cooperative tool loop on top of a ChatBackend.

One iteration == one RuntimeStep:

    prepare_step -> backend round trip -> dispatch tool calls (sequentially)
    -> fold assistant turn + tool results into the conversation

The loop stops when the model answers without tool calls, when ``stop_when``
says so, or after ``max_steps`` iterations. Tool failures never end the run;
they are formatted and handed back to the model. Backend failures end the run
with LLM_ERROR, and an exception from a caller hook (prepare_step, stop_when)
ends it with UNKNOWN.
"""

from __future__ import annotations

import inspect
from dataclasses import replace
from typing import Any, Sequence

from pydantic import ValidationError

from specplanner.errors import AppError, AppErrorCode, ToolError, ToolErrorCode, format_tool_error
from specplanner.llm.base import (
    DEFAULT_MAX_STEPS,
    AgentMessage,
    AgentRuntime,
    ChatBackend,
    ChatRequest,
    GenerateObjectResult,
    GenerateTextResult,
    MessagePart,
    PrepareStep,
    PrepareStepContext,
    RuntimeStep,
    RuntimeToolCall,
    RuntimeToolResult,
    RuntimeUsage,
    SchemaT,
    StepOverrides,
    StopCondition,
    TextPart,
    ToolCallPart,
    ToolResultPart,
    ToolSpec,
)
from specplanner.observability.tracing import Span, log_event, new_trace_id
from specplanner.tools.base import Tool, tool_json_schema
from specplanner.validation import describe_validation_issues, safe_json_parse, unwrap_code_fence


def _backend_error(exc: Exception, *, step_number: int | None = None) -> AppError:
    where = f' at step {step_number}' if step_number is not None else ''
    return AppError(
        AppErrorCode.LLM_ERROR,
        f'Model request failed{where}: {type(exc).__name__}: {exc}',
        {'step': step_number, 'exception': type(exc).__name__},
    )


def _hook_error(hook: str, exc: Exception, step_number: int) -> AppError:
    return AppError(
        AppErrorCode.UNKNOWN,
        f'{hook} hook failed at step {step_number}: {type(exc).__name__}: {exc}',
        {'step': step_number, 'hook': hook, 'exception': type(exc).__name__},
    )


def _tool_spec(tool: Tool) -> ToolSpec:
    return ToolSpec(name=tool.name, description=tool.description or '', parameters=tool_json_schema(tool))


def _apply_overrides(
    conversation: Sequence[AgentMessage],
    overrides: StepOverrides | None,
) -> tuple[AgentMessage, ...]:
    if overrides is None:
        return tuple(conversation)
    messages = list(overrides.messages) if overrides.messages is not None else list(conversation)
    if overrides.system is not None:
        # The override replaces every system directive for this step.
        messages = [AgentMessage.system(overrides.system)] + [m for m in messages if m.role != 'system']
    return tuple(messages)


def _active_tools(tools: Sequence[Tool], overrides: StepOverrides | None) -> list[Tool]:
    if overrides is None or overrides.active_tools is None:
        return list(tools)
    wanted = set(overrides.active_tools)
    return [tool for tool in tools if tool.name in wanted]


class ToolLoopRuntime(AgentRuntime):
    """AgentRuntime that drives any ChatBackend through a bounded step loop."""

    def __init__(self, backend: ChatBackend, *, default_max_steps: int = DEFAULT_MAX_STEPS) -> None:
        self._backend = backend
        self._default_max_steps = default_max_steps

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
        step_limit = self._default_max_steps if max_steps is None else max_steps
        if step_limit < 1:
            return AppError(
                AppErrorCode.VALIDATION_ERROR,
                'max_steps must be at least 1',
                {'max_steps': step_limit},
            )

        tool_list = list(tools or [])
        seen: set[str] = set()
        for tool in tool_list:
            if tool.name in seen:
                return AppError(
                    AppErrorCode.VALIDATION_ERROR,
                    f'Duplicate tool name in run: {tool.name}',
                    {'tool': tool.name},
                )
            seen.add(tool.name)

        trace_id = new_trace_id()
        conversation: list[AgentMessage] = list(messages)
        steps: list[RuntimeStep] = []
        usage = RuntimeUsage()

        log_event('run.start', trace_id=trace_id, tools=sorted(seen), max_steps=step_limit)

        for step_number in range(1, step_limit + 1):
            try:
                overrides = await self._prepare(
                    prepare_step,
                    PrepareStepContext(
                        step_number=step_number,
                        steps=tuple(steps),
                        messages=tuple(conversation),
                    ),
                )
            except Exception as exc:  # noqa: BLE001 - boundary wrapper for caller hooks
                error = _hook_error('prepare_step', exc, step_number)
                log_event('run.error', trace_id=trace_id, step=step_number, error=error.message)
                return error
            active = _active_tools(tool_list, overrides)
            request = ChatRequest(
                messages=_apply_overrides(conversation, overrides),
                tools=tuple(_tool_spec(tool) for tool in active),
                tool_choice=overrides.tool_choice if overrides is not None else None,
                temperature=temperature,
                max_tokens=max_tokens,
            )

            span = Span(name='llm.step', trace_id=trace_id, attributes={'step': step_number})
            try:
                with span:
                    response = await self._backend.complete(request)
            except Exception as exc:  # noqa: BLE001 - boundary wrapper for backend failures
                error = _backend_error(exc, step_number=step_number)
                log_event('run.error', trace_id=trace_id, span=span, error=error.message)
                return error

            usage = usage + response.usage
            calls = tuple(
                call if call.call_id else replace(call, call_id=f'call-{step_number}-{index}')
                for index, call in enumerate(response.tool_calls)
            )
            active_by_name = {tool.name: tool for tool in active}
            results = []
            for call in calls:
                results.append(await self._dispatch(call, active_by_name, trace_id))

            steps.append(
                RuntimeStep(
                    step_number=step_number,
                    text=response.text or None,
                    finish_reason='tool-calls' if calls else response.finish_reason,
                    usage=response.usage,
                    tool_calls=calls,
                    tool_results=tuple(results),
                )
            )
            log_event(
                'run.step',
                trace_id=trace_id,
                span=span,
                step=step_number,
                finish_reason=steps[-1].finish_reason,
                tool_calls=[call.tool_name for call in calls],
            )

            if not calls:
                break

            assistant_parts: list[MessagePart] = []
            if response.text:
                assistant_parts.append(TextPart(response.text))
            assistant_parts.extend(ToolCallPart(c.call_id or '', c.tool_name, c.args) for c in calls)
            conversation.append(AgentMessage(role='assistant', content=tuple(assistant_parts)))
            conversation.append(
                AgentMessage(
                    role='tool',
                    content=tuple(
                        ToolResultPart(r.call_id or '', r.tool_name, r.result, r.is_error) for r in results
                    ),
                )
            )

            if stop_when is None:
                continue
            try:
                should_stop = stop_when(tuple(steps))
            except Exception as exc:  # noqa: BLE001 - boundary wrapper for caller hooks
                error = _hook_error('stop_when', exc, step_number)
                log_event('run.error', trace_id=trace_id, step=step_number, error=error.message)
                return error
            if should_stop:
                break

        log_event(
            'run.end',
            trace_id=trace_id,
            steps=len(steps),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
        text = (steps[-1].text or '') if steps else ''
        return GenerateTextResult(text=text, steps=tuple(steps), usage=usage)

    async def generate_object(
        self,
        messages: Sequence[AgentMessage],
        schema: type[SchemaT],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> GenerateObjectResult[SchemaT] | AppError:
        request = ChatRequest(
            messages=tuple(messages),
            temperature=temperature,
            max_tokens=max_tokens,
            response_schema=schema.model_json_schema(),
            response_schema_name=schema.__name__,
        )
        try:
            response = await self._backend.complete(request)
        except Exception as exc:  # noqa: BLE001 - boundary wrapper for backend failures
            return _backend_error(exc)

        parsed = safe_json_parse(unwrap_code_fence(response.text), f'{schema.__name__} response')
        if isinstance(parsed, AppError):
            return AppError(AppErrorCode.LLM_ERROR, parsed.message, parsed.details)
        try:
            obj = schema.model_validate(parsed)
        except ValidationError as exc:
            return AppError(
                AppErrorCode.LLM_ERROR,
                f'{schema.__name__} response does not match the schema: {describe_validation_issues(exc)}',
                {'raw': response.text},
            )
        return GenerateObjectResult(object=obj, usage=response.usage)

    @staticmethod
    async def _prepare(prepare_step: PrepareStep | None, context: PrepareStepContext) -> StepOverrides | None:
        if prepare_step is None:
            return None
        overrides = prepare_step(context)
        if inspect.isawaitable(overrides):
            overrides = await overrides
        return overrides

    @staticmethod
    async def _dispatch(call: RuntimeToolCall, tools: dict[str, Tool], trace_id: str) -> RuntimeToolResult:
        tool = tools.get(call.tool_name)
        outcome: Any
        with Span(name=f'tool.{call.tool_name}', trace_id=trace_id) as span:
            if tool is None:
                outcome = ToolError(
                    ToolErrorCode.NOT_FOUND,
                    f'Tool "{call.tool_name}" is not available. Use one of: {", ".join(tools) or "none"}.',
                )
            else:
                outcome = await tool.call(call.args)

        if isinstance(outcome, ToolError):
            span.status = 'error'
            log_event('tool.error', trace_id=trace_id, span=span, tool=call.tool_name, code=outcome.code.value)
            return RuntimeToolResult(
                tool_name=call.tool_name,
                result=format_tool_error(call.tool_name, outcome),
                call_id=call.call_id,
                is_error=True,
            )

        log_event('tool.call', trace_id=trace_id, span=span, tool=call.tool_name)
        return RuntimeToolResult(tool_name=call.tool_name, result=outcome, call_id=call.call_id)
