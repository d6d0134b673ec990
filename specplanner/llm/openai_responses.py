"""OpenAI Responses API backend (HTTP-based).

Why HTTP directly?
- Keeps the adapter isolated and explicit.
- Avoids SDK drift.
- Makes it easy to mock with httpx transports.

Function calling on the Responses API is item based: the model emits
``function_call`` output items and expects matching ``function_call_output``
input items on the next request, paired by ``call_id``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
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


@dataclass(frozen=True)
class OpenAIResponsesConfig:
    """Configuration for the OpenAI Responses API backend."""

    api_key: str
    base_url: str = 'https://api.openai.com/v1'
    model: str = 'gpt-4.1-mini'
    timeout: float = 60.0


class OpenAIResponsesBackend(ChatBackend):
    """Backend that calls OpenAI's Responses API."""

    def __init__(self, config: OpenAIResponsesConfig, client: httpx.AsyncClient | None = None) -> None:
        self._cfg = config
        self._client = client

    async def complete(self, request: ChatRequest) -> ChatResponse:
        url = f'{self._cfg.base_url.rstrip("/")}/responses'
        headers = {
            'Authorization': f'Bearer {self._cfg.api_key}',
            'Content-Type': 'application/json',
        }

        body: dict[str, Any] = {
            'model': self._cfg.model,
            'input': _map_input(request.messages),
        }
        if request.temperature is not None:
            body['temperature'] = request.temperature
        if request.max_tokens is not None:
            body['max_output_tokens'] = request.max_tokens

        if request.tools:
            body['tools'] = [
                {
                    'type': 'function',
                    'name': spec.name,
                    'description': spec.description,
                    'parameters': spec.parameters,
                }
                for spec in request.tools
            ]
            if request.tool_choice is not None:
                body['tool_choice'] = (
                    {'type': 'function', 'name': request.tool_choice.tool_name}
                    if isinstance(request.tool_choice, ForcedTool)
                    else request.tool_choice
                )

        if request.response_schema is not None:
            body['text'] = {
                'format': {
                    'type': 'json_schema',
                    'name': request.response_schema_name,
                    'schema': request.response_schema,
                    'strict': False,
                }
            }

        if self._client is not None:
            resp = await self._client.post(url, json=body, headers=headers, timeout=self._cfg.timeout)
            resp.raise_for_status()
            return _parse_payload(resp.json())

        async with httpx.AsyncClient() as client:
            resp = await client.post(url, json=body, headers=headers, timeout=self._cfg.timeout)
            resp.raise_for_status()
            return _parse_payload(resp.json())


def _map_input(messages: tuple[AgentMessage, ...]) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for message in messages:
        if message.role == 'tool':
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    items.append(
                        {
                            'type': 'function_call_output',
                            'call_id': part.call_id,
                            'output': serialize_tool_result(part.result),
                        }
                    )
            continue

        if message.text:
            items.append({'role': message.role, 'content': message.text})

        if message.role == 'assistant':
            for part in message.parts:
                if isinstance(part, ToolCallPart):
                    items.append(
                        {
                            'type': 'function_call',
                            'call_id': part.call_id,
                            'name': part.tool_name,
                            'arguments': part.args if isinstance(part.args, str) else json.dumps(part.args),
                        }
                    )
    return items


def _parse_payload(payload: dict[str, Any]) -> ChatResponse:
    error = payload.get('error')
    if error:
        message = error.get('message') if isinstance(error, dict) else str(error)
        raise BackendError(f'Provider returned an error: {message}')

    output = payload.get('output')
    if not isinstance(output, list):
        raise BackendError('Responses API payload has no output list.')

    texts: list[str] = []
    tool_calls: list[RuntimeToolCall] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        if item.get('type') == 'function_call':
            name = item.get('name')
            if not isinstance(name, str) or not name:
                raise BackendError('function_call item without a name.')
            tool_calls.append(
                RuntimeToolCall(
                    tool_name=name,
                    args=parse_tool_arguments(item.get('arguments')),
                    call_id=item.get('call_id') or item.get('id'),
                )
            )
            continue
        content = item.get('content')
        if isinstance(content, list):
            for c in content:
                if isinstance(c, dict) and c.get('type') in ('output_text', 'text'):
                    text = c.get('text')
                    if isinstance(text, str):
                        texts.append(text)

    text = ''.join(texts)
    # Some SDKs expose output_text; REST payloads may not. Keep a fallback.
    if not text and isinstance(payload.get('output_text'), str):
        text = payload['output_text']

    return ChatResponse(
        text=text,
        tool_calls=tuple(tool_calls),
        finish_reason=_finish_reason(payload, bool(tool_calls)),
        usage=_extract_usage(payload),
        raw=payload,
    )


def _finish_reason(payload: dict[str, Any], has_tool_calls: bool) -> FinishReason:
    if has_tool_calls:
        return 'tool-calls'
    status = payload.get('status')
    if status == 'incomplete':
        details = payload.get('incomplete_details') or {}
        reason = details.get('reason') if isinstance(details, dict) else None
        if reason == 'max_output_tokens':
            return 'length'
        if reason == 'content_filter':
            return 'content-filter'
        return 'other'
    if status == 'failed':
        return 'error'
    return 'stop'


def _extract_usage(payload: dict[str, Any]) -> RuntimeUsage:
    usage = payload.get('usage')
    if not isinstance(usage, dict):
        return RuntimeUsage()

    input_tokens = usage.get('input_tokens')
    output_tokens = usage.get('output_tokens')
    return RuntimeUsage(
        input_tokens=int(input_tokens) if isinstance(input_tokens, int) else None,
        output_tokens=int(output_tokens) if isinstance(output_tokens, int) else None,
    )
