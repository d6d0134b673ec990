"""Rule summarizer: rule file -> short description + tags."""

from __future__ import annotations

from specplanner.errors import AppError
from specplanner.llm.base import AgentMessage, AgentRuntime
from specplanner.observability.tracing import log_event, new_trace_id
from specplanner.prompts.loader import load_prompt
from specplanner.prompts.renderer import PromptRenderer
from specplanner.schemas import RuleSummary
from specplanner.validation import RULE_DESCRIPTION_MAX_CHARS, validate_rule_summary


class RuleSummarizer:
    def __init__(self, runtime: AgentRuntime, *, temperature: float = 0.2, renderer: PromptRenderer | None = None):
        self.runtime = runtime
        self.temperature = temperature
        self.renderer = renderer or PromptRenderer()

    async def summarize(self, *, path: str, content: str) -> RuleSummary | AppError:
        """Summarize one rule file. Model and validation failures come back as AppError."""
        system = self.renderer.render(
            load_prompt('rule_summarizer', 'v1'),
            {'max_chars': RULE_DESCRIPTION_MAX_CHARS},
        )
        result = await self.runtime.generate_text(
            [
                AgentMessage.system(system),
                AgentMessage.user(f'Rule path: {path}\n\nContent:\n{content}'),
            ],
            temperature=self.temperature,
        )
        if isinstance(result, AppError):
            log_event('summarizer.failed', trace_id=new_trace_id(), kind='rule', path=path, error=result.message)
            return result

        summary = validate_rule_summary(result.text, path)
        if isinstance(summary, AppError):
            log_event('summarizer.failed', trace_id=new_trace_id(), kind='rule', path=path, error=summary.message)
        return summary
