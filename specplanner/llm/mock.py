"""Scripted backend.

Use this for:
- deterministic tests
- offline development
- unit tests for orchestration logic

Provide either a list of canned responses (replayed in order, the last one
repeating once the script runs out) or a callable mapping request -> response.
An Exception in the script is raised instead of returned, which simulates a
transport failure.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

from specplanner.llm.base import ChatBackend, ChatRequest, ChatResponse, RuntimeToolCall, RuntimeUsage


def text_response(text: str, *, usage: RuntimeUsage | None = None) -> ChatResponse:
    return ChatResponse(text=text, finish_reason='stop', usage=usage or RuntimeUsage())


def tool_call_response(
    tool_name: str,
    args: Any,
    *,
    call_id: str | None = None,
    text: str = '',
    usage: RuntimeUsage | None = None,
) -> ChatResponse:
    return ChatResponse(
        text=text,
        tool_calls=(RuntimeToolCall(tool_name=tool_name, args=args, call_id=call_id),),
        finish_reason='tool-calls',
        usage=usage or RuntimeUsage(),
    )


class ScriptedBackend(ChatBackend):
    """A backend that returns pre-canned responses and records every request."""

    def __init__(
        self,
        script: Sequence[ChatResponse | Exception] | None = None,
        fn: Callable[[ChatRequest], ChatResponse] | None = None,
    ) -> None:
        self._script = list(script or [])
        self._fn = fn
        self.requests: list[ChatRequest] = []

    async def complete(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self._fn is not None:
            return self._fn(request)
        if not self._script:
            return text_response('')

        index = min(len(self.requests), len(self._script)) - 1
        item = self._script[index]
        if isinstance(item, Exception):
            raise item
        return item
