"""Code summarizer: source file -> one descriptive paragraph."""

from __future__ import annotations

from specplanner.errors import AppError
from specplanner.llm.base import AgentMessage, AgentRuntime
from specplanner.observability.tracing import log_event, new_trace_id
from specplanner.prompts.loader import load_prompt

DESCRIPTION_MAX_CHARS = 2000


class CodeSummarizer:
    def __init__(self, runtime: AgentRuntime, *, temperature: float = 0.2):
        self.runtime = runtime
        self.temperature = temperature

    async def summarize(self, *, path: str, content: str) -> str | AppError:
        result = await self.runtime.generate_text(
            [
                AgentMessage.system(load_prompt('code_summarizer', 'v1')),
                AgentMessage.user(f'File path: {path}\n\nContent:\n{content}'),
            ],
            temperature=self.temperature,
        )
        if isinstance(result, AppError):
            return result
        return result.text


async def describe_file(*, path: str, content: str, summarizer: CodeSummarizer) -> str:
    """Best-effort description of one file.

    The summary is trimmed and cut to DESCRIPTION_MAX_CHARS. Any failure yields
    an empty string; the failure is logged, never raised.
    """
    try:
        summary = await summarizer.summarize(path=path, content=content)
    except Exception as exc:  # noqa: BLE001 - boundary wrapper for summarizer failures
        log_event('summarizer.failed', trace_id=new_trace_id(), kind='code', path=path, error=str(exc))
        return ''
    if isinstance(summary, AppError):
        log_event('summarizer.failed', trace_id=new_trace_id(), kind='code', path=path, error=summary.message)
        return ''
    return summary.strip()[:DESCRIPTION_MAX_CHARS]
