from __future__ import annotations

import json

import httpx
import pytest

from specplanner.errors import AppError, AppErrorCode
from specplanner.llm.base import AgentMessage, BackendError, ChatRequest, ToolSpec
from specplanner.llm.loop import ToolLoopRuntime
from specplanner.llm.openai_chat import OpenAIChatBackend, OpenAIChatConfig


def _chat_payload(message: dict, finish_reason: str = 'stop') -> dict:
    return {
        'id': 'chatcmpl-test',
        'choices': [{'index': 0, 'message': message, 'finish_reason': finish_reason}],
        'usage': {'prompt_tokens': 20, 'completion_tokens': 5},
    }


@pytest.mark.asyncio
async def test_chat_backend_posts_to_chat_completions() -> None:
    # Arrange
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['path'] = request.url.path
        captured['body'] = json.loads(request.content)
        captured['referer'] = request.headers.get('HTTP-Referer')
        return httpx.Response(200, json=_chat_payload({'role': 'assistant', 'content': 'hello'}))

    cfg = OpenAIChatConfig(
        api_key='or-key',
        model='amazon/nova-2-lite-v1:free',
        base_url='https://openrouter.ai/api/v1',
        extra_headers={'HTTP-Referer': 'https://example.test'},
    )
    spec = ToolSpec(name='viewFile', description='Read a file', parameters={'type': 'object', 'properties': {}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        backend = OpenAIChatBackend(cfg, client=client)

        # Act
        resp = await backend.complete(
            ChatRequest(
                messages=(AgentMessage.system('sys'), AgentMessage.user('hi')),
                tools=(spec,),
                tool_choice='required',
                temperature=0.3,
            )
        )

    # Assert
    assert captured['path'] == '/api/v1/chat/completions'
    assert captured['referer'] == 'https://example.test'
    body = captured['body']
    assert body['model'] == 'amazon/nova-2-lite-v1:free'
    assert body['messages'] == [{'role': 'system', 'content': 'sys'}, {'role': 'user', 'content': 'hi'}]
    assert body['tools'][0] == {
        'type': 'function',
        'function': {'name': 'viewFile', 'description': 'Read a file', 'parameters': {'type': 'object', 'properties': {}}},
    }
    assert body['tool_choice'] == 'required'
    assert body['temperature'] == 0.3
    assert resp.text == 'hello'
    assert resp.usage.total_tokens == 25


@pytest.mark.asyncio
async def test_chat_backend_parses_tool_calls() -> None:
    message = {
        'role': 'assistant',
        'content': None,
        'tool_calls': [
            {'id': 'call_a', 'type': 'function', 'function': {'name': 'lookupRules', 'arguments': '{"ruleId": "r1"}'}}
        ],
    }

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json=_chat_payload(message, 'tool_calls')))
    ) as client:
        backend = OpenAIChatBackend(OpenAIChatConfig(api_key='k', model='m'), client=client)
        resp = await backend.complete(ChatRequest(messages=(AgentMessage.user('x'),)))

    assert resp.finish_reason == 'tool-calls'
    assert resp.text == ''
    assert resp.tool_calls[0].tool_name == 'lookupRules'
    assert resp.tool_calls[0].args == {'ruleId': 'r1'}
    assert resp.tool_calls[0].call_id == 'call_a'


@pytest.mark.asyncio
async def test_chat_backend_without_choices_raises() -> None:
    async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))) as client:
        backend = OpenAIChatBackend(OpenAIChatConfig(api_key='k', model='m'), client=client)

        with pytest.raises(BackendError):
            await backend.complete(ChatRequest(messages=(AgentMessage.user('x'),)))


@pytest.mark.asyncio
async def test_http_error_surfaces_as_llm_error_through_runtime() -> None:
    # Arrange
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={'error': {'message': 'rate limited'}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        runtime = ToolLoopRuntime(OpenAIChatBackend(OpenAIChatConfig(api_key='k', model='m'), client=client))

        # Act
        result = await runtime.generate_text([AgentMessage.user('x')])

    # Assert
    assert isinstance(result, AppError)
    assert result.code == AppErrorCode.LLM_ERROR
    assert 'HTTPStatusError' in result.message
