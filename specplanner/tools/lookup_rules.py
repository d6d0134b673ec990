"""lookupRules: resolve a rule id against the run's rules index."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from specplanner.errors import ToolError, ToolErrorCode
from specplanner.schemas import RuleReference, RulesIndex
from specplanner.tools.base import Tool, make_tool

LOOKUP_RULES_TOOL = 'lookupRules'


class LookupRulesArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rule_id: str = Field(alias='ruleId', min_length=1, description='Rule identifier from the rules index.')


def create_lookup_rules_tool(rules_index: RulesIndex) -> Tool[LookupRulesArgs]:
    async def handler(args: LookupRulesArgs) -> dict | ToolError:
        rule = rules_index.find(args.rule_id)
        if rule is None:
            return ToolError(ToolErrorCode.NOT_FOUND, f'Rule {args.rule_id} not found', {'ruleId': args.rule_id})
        return rule.model_dump(mode='json')

    return make_tool(
        name=LOOKUP_RULES_TOOL,
        description='Look up one rule from the rules index by id and return its description, path and tags.',
        input_schema=LookupRulesArgs,
        output_schema=RuleReference,
        handler=handler,
    )
