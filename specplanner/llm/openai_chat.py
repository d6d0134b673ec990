"""Chat Completions backend (HTTP-based).

Speaks the OpenAI ``/chat/completions`` wire format, which OpenRouter, z.ai
and OpenAI itself all accept. Calling the HTTP API directly keeps the adapter
explicit and lets tests swap the transport with ``httpx.MockTransport``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import httpx

from specplanner.llm.base import (
    AgentMessage,
    BackendError,
    ChatBackend,
    ChatRequest,
    ChatResponse,
    FinishReason,
    ForcedTool,
    RuntimeToolCall,
    RuntimeUsage,
    ToolCallPart,
    ToolResultPart,
    parse_tool_arguments,
    serialize_tool_result,
)

_FINISH_REASONS: dict[str, FinishReason] = {
    'stop': 'stop',
    'length': 'length',
    'tool_calls': 'tool-calls',
    'function_call': 'tool-calls',
    'content_filter': 'content-filter',
    'error': 'error',
}


@dataclass(frozen=True)
class OpenAIChatConfig:
    """Configuration for a Chat Completions compatible endpoint."""

    api_key: str
    model: str
    base_url: str = 'https://api.openai.com/v1'
    timeout: float = 60.0
    extra_headers: dict[str, str] = field(default_factory=dict)


class OpenAIChatBackend(ChatBackend):
    """Backend that calls a Chat Completions compatible API."""

    def __init__(self, config: OpenAIChatConfig, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = config
        self._client = client

    async def complete(self, request: ChatRequest) -> ChatResponse:
        url = f'{self._cfg.base_url.rstrip("/")}/chat/completions'
        headers = {
            'Authorization': f'Bearer {self._cfg.api_key}',
            'Content-Type': 'application/json',
            **self._cfg.extra_headers,
        }
        body = self._build_body(request)

        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers, timeout=self._cfg.timeout)
            resp.raise_for_status()
            return _parse_response(resp.json())

        async with httpx.AsyncClient() as client:
            resp = await client.post(url, json=body, headers=headers, timeout=self._cfg.timeout)
            resp.raise_for_status()
            return _parse_response(resp.json())

    def _build_body(self, request: ChatRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            'model': self._cfg.model,
            'messages': _map_messages(request.messages),
        }
        if request.temperature is not None:
            body['temperature'] = request.temperature
        if request.max_tokens is not None:
            body['max_tokens'] = request.max_tokens

        if request.tools:
            body['tools'] = [
                {
                    'type': 'function',
                    'function': {
                        'name': spec.name,
                        'description': spec.description,
                        'parameters': spec.parameters,
                    },
                }
                for spec in request.tools
            ]
            if request.tool_choice is not None:
                body['tool_choice'] = _map_tool_choice(request.tool_choice)

        if request.response_schema is not None:
            body['response_format'] = {
                'type': 'json_schema',
                'json_schema': {
                    'name': request.response_schema_name,
                    'schema': request.response_schema,
                    'strict': False,
                },
            }
        return body


def _map_tool_choice(choice: Any) -> Any:
    if isinstance(choice, ForcedTool):
        return {'type': 'function', 'function': {'name': choice.tool_name}}
    return choice


def _map_messages(messages: tuple[AgentMessage, ...]) -> list[dict[str, Any]]:
    mapped: list[dict[str, Any]] = []
    for message in messages:
        if message.role == 'tool':
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    mapped.append(
                        {
                            'role': 'tool',
                            'tool_call_id': part.call_id,
                            'content': serialize_tool_result(part.result),
                        }
                    )
            continue

        if message.role == 'assistant':
            entry: dict[str, Any] = {'role': 'assistant', 'content': message.text or None}
            calls = [part for part in message.parts if isinstance(part, ToolCallPart)]
            if calls:
                entry['tool_calls'] = [
                    {
                        'id': call.call_id,
                        'type': 'function',
                        'function': {
                            'name': call.tool_name,
                            'arguments': call.args if isinstance(call.args, str) else json.dumps(call.args),
                        },
                    }
                    for call in calls
                ]
            mapped.append(entry)
            continue

        mapped.append({'role': message.role, 'content': message.text})
    return mapped


def _extract_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return ''.join(
            c.get('text', '') for c in content if isinstance(c, dict) and c.get('type') in ('text', 'output_text')
        )
    return ''


def _parse_response(payload: dict[str, Any]) -> ChatResponse:
    """Normalize a Chat Completions payload.

    Raises:
        BackendError: If the payload carries an error or no choices.
    """
    error = payload.get('error')
    if error:
        message = error.get('message') if isinstance(error, dict) else str(error)
        raise BackendError(f'Provider returned an error: {message}')

    choices = payload.get('choices')
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise BackendError('Chat Completions payload has no choices.')

    choice = choices[0]
    message = choice.get('message') or {}
    tool_calls: list[RuntimeToolCall] = []
    for raw_call in message.get('tool_calls') or []:
        function = raw_call.get('function') or {}
        name = function.get('name')
        if not isinstance(name, str) or not name:
            raise BackendError('Tool call without a function name.')
        tool_calls.append(
            RuntimeToolCall(
                tool_name=name,
                args=parse_tool_arguments(function.get('arguments')),
                call_id=raw_call.get('id'),
            )
        )

    raw_reason = choice.get('finish_reason')
    finish_reason = _FINISH_REASONS.get(raw_reason, 'other') if isinstance(raw_reason, str) else 'other'
    if tool_calls:
        finish_reason = 'tool-calls'

    return ChatResponse(
        text=_extract_text(message.get('content')),
        tool_calls=tuple(tool_calls),
        finish_reason=finish_reason,
        usage=_extract_usage(payload),
        raw=payload,
    )


def _extract_usage(payload: dict[str, Any]) -> RuntimeUsage:
    usage = payload.get('usage')
    if not isinstance(usage, dict):
        return RuntimeUsage()
    prompt_tokens = usage.get('prompt_tokens')
    completion_tokens = usage.get('completion_tokens')
    return RuntimeUsage(
        input_tokens=prompt_tokens if isinstance(prompt_tokens, int) else None,
        output_tokens=completion_tokens if isinstance(completion_tokens, int) else None,
    )
