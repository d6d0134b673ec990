"""Domain schemas: specifications in, plans out.

Pydantic is the schema layer for everything the model is allowed to produce:
- the submitPlan tool validates its arguments against PlanSubmission
- the free-text validator constructs Plan/TodoTask only after its own walk
- the plan agent re-validates the submitted arguments after the run

JSON keys follow the plan file contract (camelCase); Python attributes are
snake_case and populated by alias or by name.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, model_validator

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _ContractModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class RuleReference(_ContractModel):
    """A rule entry copied from the rules index. Never invented by the model."""

    id: str = Field(min_length=1, description='Rule identifier from the rules index.')
    description: str = Field(min_length=1, description='What the rule enforces.')
    path: str = Field(min_length=1, description='Repo-relative path of the rule file.')
    tags: list[str] = Field(description='Scopes the rule applies to.')


class RulesIndex(_ContractModel):
    """Caller-supplied index of every known rule."""

    rules: list[RuleReference] = Field(default_factory=list)

    def find(self, rule_id: str) -> RuleReference | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None


class RuleSummary(_ContractModel):
    """Model-generated description and tags for one rule file."""

    description: str
    tags: list[str]


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class TaskKind(str, Enum):
    FEATURE = 'feature'
    REFACTOR = 'refactor'
    BUGFIX = 'bugfix'
    CHORE = 'chore'
    OTHER = 'other'


class TaskScope(_ContractModel):
    files: list[str] | None = None
    include_globs: list[str] | None = Field(default=None, alias='includeGlobs')
    exclude_globs: list[str] | None = Field(default=None, alias='excludeGlobs')


class TodoTask(_ContractModel):
    """One actionable unit of a plan. Must reference at least one rule."""

    id: str = Field(min_length=1, description='Task identifier, unique within the plan.')
    title: str = Field(min_length=1)
    instructions: str = Field(min_length=1)
    kind: TaskKind | None = None
    scope: TaskScope | None = None
    rules: list[RuleReference] = Field(
        min_length=1,
        description='Rules copied from the rules index. At least one is required.',
    )
    acceptance_criteria: list[str] | None = Field(default=None, alias='acceptanceCriteria')
    dependencies: list[str] | None = Field(default=None, description='Ids of tasks this one depends on.')
    meta_data: dict[str, Any] | None = Field(default=None, alias='metaData')


class Plan(_ContractModel):
    """The terminal artifact of a planning run."""

    id: str = Field(min_length=1)
    summary: str | None = None
    notes: list[str] | None = None
    tasks: list[TodoTask] = Field(min_length=1)

    def to_json_dict(self) -> dict[str, Any]:
        """Dump using the plan file contract (camelCase keys, no nulls)."""
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class PlanSubmission(_ContractModel):
    """Arguments of the submitPlan tool.

    Same shape as Plan except that ``id`` may be omitted; the agent fills it
    with the specification-derived id.
    """

    id: str | None = Field(default=None, description='Plan id. Omit to use the id derived from the specification.')
    summary: str | None = Field(default=None, description='Brief description of what the plan accomplishes.')
    notes: list[str] | None = None
    tasks: list[TodoTask] = Field(min_length=1, description='Tasks ordered by dependencies.')

    def to_plan(self, fallback_id: str) -> Plan:
        return Plan(
            id=self.id or fallback_id,
            summary=self.summary or None,
            notes=self.notes,
            tasks=self.tasks,
        )


# ---------------------------------------------------------------------------
# Specification (consumed, never produced)
# ---------------------------------------------------------------------------


class Overview(_ContractModel):
    summary: NonEmptyStr
    goals: list[NonEmptyStr] | None = None


class Motivation(_ContractModel):
    problem: NonEmptyStr | None = None
    context: list[NonEmptyStr] | None = None


class ImplementationExample(_ContractModel):
    description: NonEmptyStr
    path: NonEmptyStr


class ImplementationPatterns(_ContractModel):
    guidelines: list[NonEmptyStr] | None = None
    examples: list[ImplementationExample] | None = None


class EdgeCase(_ContractModel):
    name: NonEmptyStr
    result: NonEmptyStr
    handling: NonEmptyStr


class Scope(_ContractModel):
    include: list[NonEmptyStr] = Field(min_length=1)
    exclude: list[NonEmptyStr] | None = None


class Specification(_ContractModel):
    """A feature specification to be broken down into tasks."""

    overview: Overview
    motivation: Motivation | None = None
    constraints: list[NonEmptyStr] | None = None
    implementation_patterns: ImplementationPatterns | None = None
    acceptance_criteria: list[NonEmptyStr] = Field(min_length=1)
    edge_cases: list[EdgeCase] | None = None
    scope: Scope

    @model_validator(mode='after')
    def _require_guardrails(self) -> 'Specification':
        if self.constraints:
            return self
        if self.implementation_patterns and self.implementation_patterns.guidelines:
            return self
        raise ValueError(
            'Specification requires constraints or implementation_patterns.guidelines to provide guardrails'
        )
