from __future__ import annotations

import json
from pathlib import Path

import pytest

from specplanner.agents.plan_agent import (
    PlanAgent,
    PlanTermination,
    find_submitted_plan,
    format_spec_for_llm,
    has_submitted_plan,
)
from specplanner.errors import AppError, AppErrorCode
from specplanner.files import RepoFiles
from specplanner.llm.base import RuntimeStep, RuntimeToolCall, RuntimeToolResult
from specplanner.llm.loop import ToolLoopRuntime
from specplanner.llm.mock import ScriptedBackend, text_response, tool_call_response
from specplanner.schemas import RulesIndex
from specplanner.specification import generate_spec_id, parse_specification
from specplanner.tools import create_default_registry

from tests.fixtures.planning_inputs import API_RULE, RULES_INDEX, SPEC_DATA, TESTING_RULE, plan_args


def _agent(backend: ScriptedBackend, tmp_path: Path, **kwargs) -> PlanAgent:
    return PlanAgent(ToolLoopRuntime(backend), files=RepoFiles(tmp_path), **kwargs)


@pytest.mark.asyncio
async def test_plan_agent_returns_submitted_plan(tmp_path: Path) -> None:
    # Arrange: the model reads a file, then submits
    (tmp_path / 'api').mkdir()
    (tmp_path / 'api' / 'app.py').write_text('router = None\n', encoding='utf-8')
    backend = ScriptedBackend(
        [
            tool_call_response('viewFile', {'path': 'api/app.py'}),
            tool_call_response('submitPlan', plan_args(rule_ids=('api-style', 'testing'))),
            text_response('should never be requested'),
        ]
    )
    agent = _agent(backend, tmp_path)

    # Act
    plan = await agent.run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    # Assert
    assert not isinstance(plan, AppError)
    assert plan.id == generate_spec_id(parse_specification(SPEC_DATA))
    assert plan.tasks[0].rules == [API_RULE, TESTING_RULE]
    assert len(backend.requests) == 2

    first = backend.requests[0]
    assert [tool.name for tool in first.tools] == ['lookupRules', 'viewFile', 'submitPlan']
    assert first.temperature == 0.3
    assert 'submitPlan' in first.messages[0].text
    assert '[api-style] HTTP handlers return typed responses' in first.messages[1].text


@pytest.mark.asyncio
async def test_plan_agent_keeps_model_plan_id(tmp_path: Path) -> None:
    backend = ScriptedBackend([tool_call_response('submitPlan', plan_args(plan_id='plan-custom'))])

    plan = await _agent(backend, tmp_path).run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    assert not isinstance(plan, AppError)
    assert plan.id == 'plan-custom'


@pytest.mark.asyncio
async def test_plan_agent_retries_after_rejected_submission(tmp_path: Path) -> None:
    # Arrange: first submission references a rule outside the index
    backend = ScriptedBackend(
        [
            tool_call_response('submitPlan', plan_args(rule_ids=('ghost',))),
            tool_call_response('submitPlan', plan_args()),
        ]
    )

    # Act
    plan = await _agent(backend, tmp_path).run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    # Assert
    assert not isinstance(plan, AppError)
    assert plan.tasks[0].rules == [API_RULE]
    tool_message = backend.requests[1].messages[-1]
    assert tool_message.role == 'tool'
    assert tool_message.parts[0].is_error is True
    assert 'unknown rule "ghost"' in tool_message.parts[0].result


@pytest.mark.asyncio
async def test_plan_agent_fails_when_model_never_submits(tmp_path: Path) -> None:
    backend = ScriptedBackend([text_response('I think the plan is fine.')])

    result = await _agent(backend, tmp_path).run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    assert isinstance(result, AppError)
    assert result.code == AppErrorCode.LLM_ERROR
    assert result.message == 'Plan agent finished after 1 step(s) without submitting a valid plan'


@pytest.mark.asyncio
async def test_plan_agent_forces_submit_on_last_step(tmp_path: Path) -> None:
    # Arrange: the model keeps exploring
    (tmp_path / 'a.py').write_text('x = 1\n', encoding='utf-8')
    backend = ScriptedBackend([tool_call_response('viewFile', {'path': 'a.py'})])

    # Act
    result = await _agent(backend, tmp_path, max_steps=3).run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    # Assert
    assert isinstance(result, AppError)
    assert result.message == 'Plan agent finished after 3 step(s) without submitting a valid plan'
    last = backend.requests[-1]
    assert [tool.name for tool in last.tools] == ['submitPlan']
    assert last.tool_choice == 'required'
    assert [tool.name for tool in backend.requests[0].tools] == ['lookupRules', 'viewFile', 'submitPlan']
    assert backend.requests[0].tool_choice is None


@pytest.mark.asyncio
async def test_plan_agent_checks_submission_against_run_rules_index(tmp_path: Path) -> None:
    # Arrange: the injected registry was built for an index without api-style
    files = RepoFiles(tmp_path)
    registry = create_default_registry(rules_index=RulesIndex(rules=[TESTING_RULE]), files=files)
    backend = ScriptedBackend([tool_call_response('submitPlan', plan_args(rule_ids=('api-style',)))])
    agent = PlanAgent(ToolLoopRuntime(backend), registry, files)

    # Act
    plan = await agent.run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    # Assert
    assert not isinstance(plan, AppError)
    assert plan.tasks[0].rules == [API_RULE]
    assert len(backend.requests) == 1


@pytest.mark.asyncio
async def test_plan_agent_rejects_invalid_specification(tmp_path: Path) -> None:
    backend = ScriptedBackend()

    result = await _agent(backend, tmp_path).run(spec={'overview': {}}, rules_index=RULES_INDEX)

    assert isinstance(result, AppError)
    assert result.code == AppErrorCode.VALIDATION_ERROR
    assert backend.requests == []


@pytest.mark.asyncio
async def test_plan_agent_backend_failure_is_llm_error(tmp_path: Path) -> None:
    backend = ScriptedBackend([ConnectionError('connection reset')])

    result = await _agent(backend, tmp_path).run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    assert isinstance(result, AppError)
    assert result.code == AppErrorCode.LLM_ERROR


@pytest.mark.asyncio
async def test_final_text_termination_validates_answer(tmp_path: Path) -> None:
    # Arrange
    answer = '```json\n' + json.dumps(plan_args()) + '\n```'
    backend = ScriptedBackend([text_response(answer)])
    agent = _agent(backend, tmp_path, termination=PlanTermination.FINAL_TEXT)

    # Act
    plan = await agent.run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    # Assert
    assert not isinstance(plan, AppError)
    assert plan.tasks[0].rules == [API_RULE]
    assert [tool.name for tool in backend.requests[0].tools] == ['lookupRules', 'viewFile']


@pytest.mark.asyncio
async def test_final_text_termination_reports_validation_error(tmp_path: Path) -> None:
    backend = ScriptedBackend([text_response('{"tasks": []}')])
    agent = _agent(backend, tmp_path, termination=PlanTermination.FINAL_TEXT)

    result = await agent.run(spec=SPEC_DATA, rules_index=RULES_INDEX)

    assert isinstance(result, AppError)
    assert result.code == AppErrorCode.VALIDATION_ERROR
    assert result.message == 'Model response must include at least one task'


def _submit_step(number: int, *, is_error: bool, args=None) -> RuntimeStep:
    call_id = f'call-{number}'
    return RuntimeStep(
        step_number=number,
        finish_reason='tool-calls',
        tool_calls=(RuntimeToolCall('submitPlan', args if args is not None else plan_args(), call_id),),
        tool_results=(RuntimeToolResult('submitPlan', {'success': not is_error}, call_id, is_error),),
    )


def test_find_submitted_plan_skips_rejected_calls() -> None:
    steps = [
        _submit_step(1, is_error=True, args=plan_args(plan_id='rejected')),
        _submit_step(2, is_error=False, args=plan_args(plan_id='accepted')),
    ]

    plan = find_submitted_plan(steps, fallback_id='plan-fallback', rules_index=RULES_INDEX)

    assert plan is not None
    assert plan.id == 'accepted'
    assert has_submitted_plan(steps) is True
    assert has_submitted_plan(steps[:1]) is False


def test_find_submitted_plan_returns_none_without_submission() -> None:
    steps = [RuntimeStep(step_number=1, text='thinking', finish_reason='stop')]

    assert find_submitted_plan(steps, fallback_id='plan-x', rules_index=RULES_INDEX) is None


def test_format_spec_for_llm_lists_sections_and_rules() -> None:
    spec = parse_specification(SPEC_DATA)

    text = format_spec_for_llm(spec, RULES_INDEX)

    assert text.startswith('## SPECIFICATION')
    assert 'Summary: Add rate limiting to the public API' in text
    assert '### Constraints\n- Do not add a new datastore' in text
    assert '- clock skew: limit still enforced (use monotonic time)' in text
    assert 'Include: api/' in text
    assert 'Exclude: docs/' in text
    assert '- [testing] Every behaviour change ships with a test (tags: tests) - path: docs/rules/testing.md' in text
