from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import BaseModel

from specplanner.errors import ToolError, ToolErrorCode
from specplanner.files import RepoFiles
from specplanner.tools import create_default_registry
from specplanner.tools.base import create_tool_registry, make_tool, tool_json_schema
from specplanner.tools.lookup_rules import create_lookup_rules_tool
from specplanner.tools.submit_plan import create_submit_plan_tool
from specplanner.tools.view_file import create_view_file_tool

from tests.fixtures.planning_inputs import API_RULE, RULES_INDEX, plan_args


class EchoArgs(BaseModel):
    text: str


def _echo_tool(name: str, calls: list):
    async def handler(args: EchoArgs):
        calls.append(args)
        return {'echo': args.text}

    return make_tool(name=name, description='Echo text', input_schema=EchoArgs, handler=handler)


@pytest.mark.asyncio
async def test_tool_rejects_invalid_args_without_calling_handler() -> None:
    # Arrange
    calls: list = []
    tool = _echo_tool('echo', calls)

    # Act
    result = await tool.call({'text': 42})

    # Assert
    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.INVALID_ARGS
    assert result.message.startswith('Invalid arguments for tool "echo". Expected object matching EchoArgs.')
    assert 'text' in result.message
    assert calls == []


@pytest.mark.asyncio
async def test_tool_passes_validated_model_to_handler() -> None:
    calls: list = []
    tool = _echo_tool('echo', calls)

    result = await tool.call({'text': 'hi'})

    assert result == {'echo': 'hi'}
    assert calls == [EchoArgs(text='hi')]


@pytest.mark.asyncio
async def test_tool_contains_handler_exception_as_internal() -> None:
    async def handler(args: EchoArgs):
        raise RuntimeError('disk on fire')

    tool = make_tool(name='boom', input_schema=EchoArgs, handler=handler)

    result = await tool.call({'text': 'x'})

    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.INTERNAL
    assert 'disk on fire' in result.message


def test_registry_pick_keeps_requested_order_and_skips_unknown() -> None:
    # Arrange
    registry = create_tool_registry([_echo_tool('a', []), _echo_tool('b', [])])

    # Act
    picked = registry.pick(['b', 'missing', 'a'])

    # Assert
    assert [tool.name for tool in picked] == ['b', 'a']
    assert registry.get_tool('missing') is None
    assert registry.names == ['a', 'b']


def test_registry_rejects_duplicate_names() -> None:
    with pytest.raises(ValueError):
        create_tool_registry([_echo_tool('a', []), _echo_tool('a', [])])


def test_tool_json_schema_describes_arguments() -> None:
    schema = tool_json_schema(_echo_tool('a', []))
    assert schema['type'] == 'object'
    assert 'text' in schema['properties']


@pytest.mark.asyncio
async def test_lookup_rules_returns_rule_from_index() -> None:
    tool = create_lookup_rules_tool(RULES_INDEX)

    result = await tool.call({'ruleId': 'api-style'})

    assert result == API_RULE.model_dump(mode='json')


@pytest.mark.asyncio
async def test_lookup_rules_unknown_rule_is_not_found() -> None:
    tool = create_lookup_rules_tool(RULES_INDEX)

    result = await tool.call({'ruleId': 'nope'})

    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.NOT_FOUND
    assert result.message == 'Rule nope not found'


@pytest.mark.asyncio
async def test_view_file_reads_repo_file(tmp_path: Path) -> None:
    # Arrange
    (tmp_path / 'api').mkdir()
    (tmp_path / 'api' / 'app.py').write_text('app = object()\n', encoding='utf-8')
    tool = create_view_file_tool(RepoFiles(tmp_path))

    # Act
    result = await tool.call({'path': 'api/app.py'})

    # Assert
    assert result == {'path': 'api/app.py', 'contents': 'app = object()\n', 'truncated': False}


@pytest.mark.asyncio
async def test_view_file_accepts_absolute_path_inside_repo(tmp_path: Path) -> None:
    (tmp_path / 'README.md').write_text('hello', encoding='utf-8')
    tool = create_view_file_tool(RepoFiles(tmp_path))

    result = await tool.call({'path': str(tmp_path / 'README.md')})

    assert result['path'] == 'README.md'


@pytest.mark.asyncio
async def test_view_file_rejects_path_outside_repo(tmp_path: Path) -> None:
    repo = tmp_path / 'repo'
    repo.mkdir()
    (tmp_path / 'secret.txt').write_text('s3cret', encoding='utf-8')
    tool = create_view_file_tool(RepoFiles(repo))

    result = await tool.call({'path': '../secret.txt'})

    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.INVALID_ARGS
    assert 'outside the repository root' in result.message


@pytest.mark.asyncio
async def test_view_file_missing_file_is_io_error(tmp_path: Path) -> None:
    tool = create_view_file_tool(RepoFiles(tmp_path))

    result = await tool.call({'path': 'missing.py'})

    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.IO_ERROR
    assert result.message == 'File not found: missing.py'


@pytest.mark.asyncio
async def test_view_file_truncates_large_files(tmp_path: Path) -> None:
    (tmp_path / 'big.txt').write_text('x' * 50, encoding='utf-8')
    tool = create_view_file_tool(RepoFiles(tmp_path, max_chars=10))

    result = await tool.call({'path': 'big.txt'})

    assert result['contents'] == 'x' * 10
    assert result['truncated'] is True


@pytest.mark.asyncio
async def test_submit_plan_accepts_known_rules() -> None:
    tool = create_submit_plan_tool(RULES_INDEX)

    result = await tool.call(plan_args(plan_id='plan-1'))

    assert result == {'success': True, 'message': 'Plan "plan-1" with 1 task(s) submitted successfully.'}


@pytest.mark.asyncio
async def test_submit_plan_rejects_unknown_rule() -> None:
    tool = create_submit_plan_tool(RULES_INDEX)

    result = await tool.call(plan_args(rule_ids=('ghost',)))

    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.INVALID_ARGS
    assert 'unknown rule "ghost"' in result.message


@pytest.mark.asyncio
async def test_submit_plan_rejects_task_without_rules() -> None:
    tool = create_submit_plan_tool(RULES_INDEX)

    result = await tool.call(plan_args(rule_ids=()))

    assert isinstance(result, ToolError)
    assert result.code == ToolErrorCode.INVALID_ARGS


def test_default_registry_holds_all_planning_tools(tmp_path: Path) -> None:
    registry = create_default_registry(rules_index=RULES_INDEX, files=RepoFiles(tmp_path))
    assert registry.names == ['lookupRules', 'viewFile', 'submitPlan']
