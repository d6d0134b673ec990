from __future__ import annotations

import pytest

from specplanner.prompts.loader import load_prompt
from specplanner.prompts.renderer import PromptRenderer
from specplanner.validation import RULE_DESCRIPTION_MAX_CHARS


def test_render_stringifies_non_text_values() -> None:
    # Arrange
    template = 'Plan ${spec_id}: at most ${max_chars} characters, strict=${strict}'

    # Act
    rendered = PromptRenderer().render(template, {'spec_id': 'spec-1', 'max_chars': 160, 'strict': True})

    # Assert
    assert rendered == 'Plan spec-1: at most 160 characters, strict=True'


def test_render_names_every_missing_variable() -> None:
    with pytest.raises(ValueError, match=r'Missing prompt variable\(s\): spec_id, submit_plan_tool'):
        PromptRenderer().render('${submit_plan_tool} for ${spec_id} (${known})', {'known': 1})


def test_render_ignores_unused_variables() -> None:
    assert PromptRenderer().render('only ${a}', {'a': 1, 'b': 2}) == 'only 1'


def test_rule_summarizer_prompt_renders_description_limit() -> None:
    rendered = PromptRenderer().render(load_prompt('rule_summarizer', 'v1'), {'max_chars': RULE_DESCRIPTION_MAX_CHARS})
    assert f'at most {RULE_DESCRIPTION_MAX_CHARS} characters' in rendered
    assert '$' not in rendered


@pytest.mark.parametrize('module', ['plan_agent', 'plan_agent_text'])
def test_plan_agent_prompts_render_tool_names(module: str) -> None:
    variables = {
        'spec_id': 'spec-abc',
        'view_file_tool': 'viewFile',
        'lookup_rules_tool': 'lookupRules',
        'submit_plan_tool': 'submitPlan',
    }

    rendered = PromptRenderer().render(load_prompt(module, 'v1'), variables)

    assert 'viewFile' in rendered
    assert '${' not in rendered
