"""Response validation: untrusted model text -> typed domain objects.

Every function here is pure and returns either the typed value or an AppError.
Nothing raises. The walk reports the *first* structural violation with an
index-scoped message so the model (or the user) can see exactly what to fix.
"""

from __future__ import annotations

import json
import re
from typing import Any

from pydantic import ValidationError

from specplanner.errors import AppError, AppErrorCode
from specplanner.schemas import Plan, RuleReference, RulesIndex, RuleSummary, TaskKind, TodoTask

RULE_DESCRIPTION_MAX_CHARS = 160

_CODE_FENCE = re.compile(r'^```(?:[\w+-]+[ \t]*(?=\r?\n))?\r?\n?(.*?)\r?\n?[ \t]*```$', re.DOTALL)
_TASK_KINDS = {kind.value for kind in TaskKind}


def _invalid(message: str, details: Any = None) -> AppError:
    return AppError(AppErrorCode.VALIDATION_ERROR, message, details)


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def unwrap_code_fence(raw: str) -> str:
    """Strip one surrounding Markdown code fence, if present.

    Examples:
        >>> unwrap_code_fence('```json\\n{"x":1}\\n```')
        '{"x":1}'
        >>> unwrap_code_fence('  {"x":1}  ')
        '{"x":1}'
    """
    trimmed = raw.strip()
    match = _CODE_FENCE.match(trimmed)
    if match is None:
        return trimmed
    return match.group(1).strip()


def safe_json_parse(text: str, context: str = 'Model response') -> Any | AppError:
    """Parse JSON without raising; failures name the context being parsed."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        return _invalid(
            f'{context} is not valid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})',
            {'raw': text},
        )


def describe_validation_issues(exc: ValidationError) -> str:
    """Flatten a pydantic ValidationError into ``loc: msg; loc: msg``."""
    issues: list[str] = []
    for error in exc.errors(include_url=False):
        loc = '.'.join(str(part) for part in error.get('loc', ()))
        msg = error.get('msg', 'invalid value')
        issues.append(f'{loc}: {msg}' if loc else msg)
    return '; '.join(issues) or 'Invalid value.'


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def _optional_string_list(value: Any, field: str, index: int) -> list[str] | None | AppError:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return _invalid(f'Task at index {index} field {field} must be an array of strings')
    return list(value)


def _validate_rule(entry: Any, rule_index: int, task_index: int) -> RuleReference | AppError:
    if (
        not isinstance(entry, dict)
        or not _is_non_empty_str(entry.get('id'))
        or not _is_non_empty_str(entry.get('description'))
        or not _is_non_empty_str(entry.get('path'))
        or not isinstance(entry.get('tags'), list)
        or not all(isinstance(tag, str) for tag in entry['tags'])
    ):
        return _invalid(f'Invalid rule at index {rule_index} in task at index {task_index}')
    return RuleReference(
        id=entry['id'],
        description=entry['description'],
        path=entry['path'],
        tags=entry['tags'],
    )


def validate_task(entry: Any, index: int) -> TodoTask | AppError:
    """Validate one task object from a model response."""
    if not isinstance(entry, dict):
        return _invalid(f'Task at index {index} must be an object')
    if not _is_non_empty_str(entry.get('id')):
        return _invalid(f'Task at index {index} must have a non-empty id')
    if not _is_non_empty_str(entry.get('title')):
        return _invalid(f'Task at index {index} must have a non-empty title')
    if not _is_non_empty_str(entry.get('instructions')):
        return _invalid(f'Task at index {index} must have non-empty instructions')

    raw_rules = entry.get('rules')
    if not isinstance(raw_rules, list) or not raw_rules:
        return _invalid(f'Task at index {index} must have at least one rule assigned')

    rules: list[RuleReference] = []
    for rule_index, raw_rule in enumerate(raw_rules):
        rule = _validate_rule(raw_rule, rule_index, index)
        if isinstance(rule, AppError):
            return rule
        rules.append(rule)

    kind = entry.get('kind')
    if kind is not None and kind not in _TASK_KINDS:
        return _invalid(f'Task at index {index} has unsupported kind {kind!r}')

    scope: dict[str, list[str]] | None = None
    raw_scope = entry.get('scope')
    if isinstance(raw_scope, dict):
        scope = {}
        for key in ('files', 'includeGlobs', 'excludeGlobs'):
            values = _optional_string_list(raw_scope.get(key), f'scope.{key}', index)
            if isinstance(values, AppError):
                return values
            if values is not None:
                scope[key] = values

    acceptance = _optional_string_list(entry.get('acceptanceCriteria'), 'acceptanceCriteria', index)
    if isinstance(acceptance, AppError):
        return acceptance
    dependencies = _optional_string_list(entry.get('dependencies'), 'dependencies', index)
    if isinstance(dependencies, AppError):
        return dependencies

    meta_data = entry.get('metaData')
    try:
        return TodoTask(
            id=entry['id'],
            title=entry['title'],
            instructions=entry['instructions'],
            kind=kind,
            scope=scope,
            rules=rules,
            acceptanceCriteria=acceptance,
            dependencies=dependencies,
            metaData=meta_data if isinstance(meta_data, dict) else None,
        )
    except ValidationError as exc:
        return _invalid(f'Task at index {index} is invalid: {describe_validation_issues(exc)}')


def apply_rules_index(tasks: list[TodoTask], rules_index: RulesIndex) -> list[TodoTask] | AppError:
    """Replace every task rule by its rules-index entry.

    Rules are copied, never re-derived: whatever description/path/tags the model
    echoed back are discarded in favour of the index. Unknown ids are rejected.
    """
    resolved: list[TodoTask] = []
    for index, task in enumerate(tasks):
        rules: list[RuleReference] = []
        for rule in task.rules:
            canonical = rules_index.find(rule.id)
            if canonical is None:
                return _invalid(
                    f'Task "{task.id}" at index {index} references unknown rule "{rule.id}"',
                    {'task_id': task.id, 'rule_id': rule.id},
                )
            rules.append(canonical.model_copy(deep=True))
        resolved.append(task.model_copy(update={'rules': rules}))
    return resolved


def validate_plan_response(
    raw: str,
    spec_id: str,
    rules_index: RulesIndex | None = None,
) -> Plan | AppError:
    """Parse and validate a plan emitted as free text.

    Args:
        raw: Model output, optionally wrapped in a Markdown code fence.
        spec_id: Fallback plan id used when the response omits one.
        rules_index: When given, task rules are resolved against it.

    Returns:
        The validated Plan, or a VALIDATION_ERROR describing the first violation.
    """
    parsed = safe_json_parse(unwrap_code_fence(raw))
    if isinstance(parsed, AppError):
        return parsed
    if not isinstance(parsed, dict):
        return _invalid('Model response must be a JSON object')

    raw_tasks = parsed.get('tasks')
    if not isinstance(raw_tasks, list):
        return _invalid('Model response must include a tasks array')
    if not raw_tasks:
        return _invalid('Model response must include at least one task')

    tasks: list[TodoTask] = []
    for index, entry in enumerate(raw_tasks):
        task = validate_task(entry, index)
        if isinstance(task, AppError):
            return task
        tasks.append(task)

    if rules_index is not None:
        resolved = apply_rules_index(tasks, rules_index)
        if isinstance(resolved, AppError):
            return resolved
        tasks = resolved

    plan_id = parsed['id'].strip() if _is_non_empty_str(parsed.get('id')) else spec_id
    summary = parsed['summary'].strip() if _is_non_empty_str(parsed.get('summary')) else None
    notes = None
    if isinstance(parsed.get('notes'), list):
        notes = [note.strip() for note in parsed['notes'] if _is_non_empty_str(note)]

    try:
        return Plan(id=plan_id, summary=summary, notes=notes, tasks=tasks)
    except ValidationError as exc:
        return _invalid(f'Model plan is invalid: {describe_validation_issues(exc)}')


# ---------------------------------------------------------------------------
# Rule summaries
# ---------------------------------------------------------------------------


def validate_rule_summary(raw: str, rule_path: str) -> RuleSummary | AppError:
    """Validate ``{"description": str, "tags": [str, ...]}`` for one rule file.

    The description is trimmed and truncated to RULE_DESCRIPTION_MAX_CHARS;
    tags are trimmed and must be a non-empty list of non-empty strings.
    """
    details = {'path': rule_path, 'raw': raw}
    parsed = safe_json_parse(unwrap_code_fence(raw), f'Model response for {rule_path}')
    if isinstance(parsed, AppError):
        return parsed
    if not isinstance(parsed, dict):
        return _invalid(f'Model response for {rule_path} must be an object', details)

    description = parsed.get('description')
    if not isinstance(description, str):
        return _invalid(f'Model response for {rule_path} must include a description string', details)
    description = description.strip()[:RULE_DESCRIPTION_MAX_CHARS].strip()
    if not description:
        return _invalid(f'Model description for {rule_path} must not be empty', details)

    raw_tags = parsed.get('tags')
    if not isinstance(raw_tags, list):
        return _invalid(f'Model response for {rule_path} must include a tags array', details)
    if not raw_tags:
        return _invalid(f'Model tags for {rule_path} must include at least one tag', details)

    tags: list[str] = []
    for tag in raw_tags:
        if not isinstance(tag, str):
            return _invalid(f'Model tags for {rule_path} must be strings', details)
        trimmed = tag.strip()
        if not trimmed:
            return _invalid(f'Model tags for {rule_path} must not be empty', details)
        tags.append(trimmed)

    return RuleSummary(description=description, tags=tags)
