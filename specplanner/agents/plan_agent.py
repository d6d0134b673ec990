"""Plan agent: specification + rules index -> validated Plan.

The run is a small state machine:

    EXPLORING --(accepted submitPlan call in the trace)--> SUBMITTED
    EXPLORING --(loop ended without one)-----------------> FAILED

Nothing is captured while the loop runs. ``stop_when`` and ``prepare_step`` are
pure functions of the step trace and the step number, and the plan is read back
out of the finished trace by ``find_submitted_plan``. Two concurrent runs share
nothing but the runtime.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence

from pydantic import ValidationError

from specplanner.errors import AppError, AppErrorCode
from specplanner.files import RepoFiles
from specplanner.llm.base import (
    DEFAULT_MAX_STEPS,
    AgentMessage,
    AgentRuntime,
    PrepareStepContext,
    RuntimeStep,
    RuntimeToolCall,
    StepOverrides,
)
from specplanner.observability.tracing import log_event, new_trace_id
from specplanner.prompts.loader import load_prompt
from specplanner.prompts.renderer import PromptRenderer
from specplanner.schemas import Plan, PlanSubmission, RulesIndex, Specification
from specplanner.specification import generate_spec_id, parse_specification
from specplanner.tools import create_default_registry
from specplanner.tools.base import ToolRegistry
from specplanner.tools.lookup_rules import LOOKUP_RULES_TOOL
from specplanner.tools.submit_plan import SUBMIT_PLAN_TOOL, check_submission_rules, create_submit_plan_tool
from specplanner.tools.view_file import VIEW_FILE_TOOL
from specplanner.validation import apply_rules_index, validate_plan_response

DEFAULT_TEMPERATURE = 0.3


class PlanRunState(str, Enum):
    EXPLORING = 'exploring'
    SUBMITTED = 'submitted'
    FAILED = 'failed'


class PlanTermination(str, Enum):
    """How a run delivers its plan.

    SUBMIT_TOOL: the model calls the terminal submitPlan tool (default).
    FINAL_TEXT: the model answers with plan JSON as its final text.
    """

    SUBMIT_TOOL = 'submit_tool'
    FINAL_TEXT = 'final_text'


# ---------------------------------------------------------------------------
# Prompt input
# ---------------------------------------------------------------------------


def _bullets(items: Sequence[str]) -> str:
    return '\n'.join(f'- {item}' for item in items)


def format_spec_for_llm(spec: Specification, rules_index: RulesIndex) -> str:
    """Render the specification and the rules index as the user message."""
    sections: list[str] = []

    overview = [f'### Overview\nSummary: {spec.overview.summary}']
    if spec.overview.goals:
        overview.append(f'Goals:\n{_bullets(spec.overview.goals)}')
    sections.append('\n'.join(overview))

    if spec.motivation and (spec.motivation.problem or spec.motivation.context):
        motivation = ['### Motivation']
        if spec.motivation.problem:
            motivation.append(f'Problem: {spec.motivation.problem}')
        if spec.motivation.context:
            motivation.append(f'Context:\n{_bullets(spec.motivation.context)}')
        sections.append('\n'.join(motivation))

    if spec.constraints:
        sections.append(f'### Constraints\n{_bullets(spec.constraints)}')

    patterns = spec.implementation_patterns
    if patterns and (patterns.guidelines or patterns.examples):
        lines = ['### Implementation Patterns']
        if patterns.guidelines:
            lines.append(_bullets(patterns.guidelines))
        if patterns.examples:
            lines.append('Examples:')
            lines.append(_bullets([f'{ex.description} ({ex.path})' for ex in patterns.examples]))
        sections.append('\n'.join(lines))

    sections.append(f'### Acceptance Criteria\n{_bullets(spec.acceptance_criteria)}')

    if spec.edge_cases:
        sections.append(
            '### Edge Cases\n' + _bullets([f'{e.name}: {e.result} ({e.handling})' for e in spec.edge_cases])
        )

    scope = [f'### Scope\nInclude: {", ".join(spec.scope.include)}']
    if spec.scope.exclude:
        scope.append(f'Exclude: {", ".join(spec.scope.exclude)}')
    sections.append('\n'.join(scope))

    rules = _bullets(
        [f'[{r.id}] {r.description} (tags: {", ".join(r.tags)}) - path: {r.path}' for r in rules_index.rules]
    )
    return '## SPECIFICATION\n\n' + '\n\n'.join(sections) + '\n\n## RULES INDEX\n\n' + (rules or '(no rules)')


# ---------------------------------------------------------------------------
# Trace inspection
# ---------------------------------------------------------------------------


def _accepted_submissions(steps: Sequence[RuntimeStep]) -> Iterator[RuntimeToolCall]:
    """Yield submitPlan calls whose result was not an error, in trace order."""
    for step in steps:
        results = {result.call_id: result for result in step.tool_results}
        for call in step.tool_calls:
            if call.tool_name != SUBMIT_PLAN_TOOL:
                continue
            result = results.get(call.call_id)
            if result is not None and not result.is_error:
                yield call


def has_submitted_plan(steps: Sequence[RuntimeStep]) -> bool:
    """Stop condition: true once any submitPlan call has been accepted."""
    return next(_accepted_submissions(steps), None) is not None


def find_submitted_plan(
    steps: Sequence[RuntimeStep],
    *,
    fallback_id: str,
    rules_index: RulesIndex,
) -> Plan | None:
    """Rebuild the plan from the first accepted submitPlan call in the trace.

    The arguments are re-validated and their rules replaced by the index entries,
    so the returned Plan never carries a rule the index does not define.
    """
    for call in _accepted_submissions(steps):
        try:
            submission = PlanSubmission.model_validate(call.args)
        except ValidationError:
            continue
        if check_submission_rules(submission, rules_index) is not None:
            continue
        plan = submission.to_plan(fallback_id)
        tasks = apply_rules_index(plan.tasks, rules_index)
        if isinstance(tasks, AppError):
            continue
        return plan.model_copy(update={'tasks': tasks})
    return None


def force_submit_on_last_step(max_steps: int):
    """prepare_step hook: on the final step only submitPlan is offered, and a tool call is required."""

    def prepare_step(context: PrepareStepContext) -> StepOverrides | None:
        if context.step_number < max_steps:
            return None
        return StepOverrides(active_tools=[SUBMIT_PLAN_TOOL], tool_choice='required')

    return prepare_step


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class PlanAgent:
    """Break a specification down into a Plan using a tool-calling model."""

    def __init__(
        self,
        runtime: AgentRuntime,
        registry: ToolRegistry | None = None,
        files: RepoFiles | None = None,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        temperature: float = DEFAULT_TEMPERATURE,
        termination: PlanTermination = PlanTermination.SUBMIT_TOOL,
        renderer: PromptRenderer | None = None,
    ) -> None:
        self.runtime = runtime
        self.registry = registry
        self.files = files if files is not None else RepoFiles(Path.cwd())
        self.max_steps = max_steps
        self.temperature = temperature
        self.termination = termination
        self.renderer = renderer or PromptRenderer()

    def _system_prompt(self, spec_id: str) -> str:
        module = 'plan_agent' if self.termination == PlanTermination.SUBMIT_TOOL else 'plan_agent_text'
        return self.renderer.render(
            load_prompt(module, 'v1'),
            {
                'spec_id': spec_id,
                'view_file_tool': VIEW_FILE_TOOL,
                'lookup_rules_tool': LOOKUP_RULES_TOOL,
                'submit_plan_tool': SUBMIT_PLAN_TOOL,
            },
        )

    async def run(
        self,
        *,
        spec: Specification | Mapping[str, Any],
        rules_index: RulesIndex,
    ) -> Plan | AppError:
        """Plan one specification.

        Returns:
            The validated Plan, or AppError. LLM_ERROR when the model never
            delivered an acceptable plan; VALIDATION_ERROR for a malformed
            specification or, in FINAL_TEXT mode, a malformed final answer.
        """
        if not isinstance(spec, Specification):
            parsed = parse_specification(spec)
            if isinstance(parsed, AppError):
                return parsed
            spec = parsed

        spec_id = generate_spec_id(spec)
        trace_id = new_trace_id()
        log_event(
            'plan.state',
            trace_id=trace_id,
            state=PlanRunState.EXPLORING.value,
            spec_id=spec_id,
            termination=self.termination.value,
        )

        registry = self.registry or create_default_registry(rules_index=rules_index, files=self.files)
        messages = [
            AgentMessage.system(self._system_prompt(spec_id)),
            AgentMessage.user(format_spec_for_llm(spec, rules_index)),
        ]

        if self.termination == PlanTermination.FINAL_TEXT:
            outcome = await self._run_final_text(messages, registry, spec_id, rules_index)
        else:
            outcome = await self._run_submit_tool(messages, registry, spec_id, rules_index)

        if isinstance(outcome, AppError):
            log_event(
                'plan.state',
                trace_id=trace_id,
                state=PlanRunState.FAILED.value,
                spec_id=spec_id,
                code=outcome.code.value,
                error=outcome.message,
            )
            return outcome

        log_event(
            'plan.state',
            trace_id=trace_id,
            state=PlanRunState.SUBMITTED.value,
            spec_id=spec_id,
            plan_id=outcome.id,
            tasks=len(outcome.tasks),
        )
        return outcome

    async def _run_submit_tool(
        self,
        messages: list[AgentMessage],
        registry: ToolRegistry,
        spec_id: str,
        rules_index: RulesIndex,
    ) -> Plan | AppError:
        result = await self.runtime.generate_text(
            messages,
            # submitPlan always checks against this run's index, whatever the registry holds.
            tools=[*registry.pick([LOOKUP_RULES_TOOL, VIEW_FILE_TOOL]), create_submit_plan_tool(rules_index)],
            temperature=self.temperature,
            max_steps=self.max_steps,
            prepare_step=force_submit_on_last_step(self.max_steps),
            stop_when=has_submitted_plan,
        )
        if isinstance(result, AppError):
            return result

        plan = find_submitted_plan(result.steps, fallback_id=spec_id, rules_index=rules_index)
        if plan is None:
            steps = len(result.steps)
            return AppError(
                AppErrorCode.LLM_ERROR,
                f'Plan agent finished after {steps} step(s) without submitting a valid plan',
                {'steps': steps, 'text': result.text},
            )
        return plan

    async def _run_final_text(
        self,
        messages: list[AgentMessage],
        registry: ToolRegistry,
        spec_id: str,
        rules_index: RulesIndex,
    ) -> Plan | AppError:
        result = await self.runtime.generate_text(
            messages,
            tools=registry.pick([LOOKUP_RULES_TOOL, VIEW_FILE_TOOL]),
            temperature=self.temperature,
            max_steps=self.max_steps,
        )
        if isinstance(result, AppError):
            return result
        return validate_plan_response(result.text, spec_id, rules_index)
