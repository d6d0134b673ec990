"""submitPlan: the terminal tool of a planning run.

The tool only validates. It keeps no reference to the submitted plan; the plan
agent reads the accepted arguments back out of the step trace once the run has
finished.
"""

from __future__ import annotations

from pydantic import BaseModel

from specplanner.errors import ToolError, ToolErrorCode
from specplanner.schemas import PlanSubmission, RulesIndex
from specplanner.tools.base import Tool, make_tool

SUBMIT_PLAN_TOOL = 'submitPlan'


class SubmitPlanResult(BaseModel):
    success: bool
    message: str


def check_submission_rules(submission: PlanSubmission, rules_index: RulesIndex) -> ToolError | None:
    """Return INVALID_ARGS for the first task rule missing from ``rules_index``."""
    for index, task in enumerate(submission.tasks):
        for rule in task.rules:
            if rules_index.find(rule.id) is None:
                return ToolError(
                    ToolErrorCode.INVALID_ARGS,
                    (
                        f'Task "{task.id}" at index {index} references unknown rule "{rule.id}". '
                        'Use rule ids from the rules index.'
                    ),
                    {'task_id': task.id, 'rule_id': rule.id},
                )
    return None


def create_submit_plan_tool(rules_index: RulesIndex) -> Tool[PlanSubmission]:
    async def handler(args: PlanSubmission) -> dict | ToolError:
        error = check_submission_rules(args, rules_index)
        if error is not None:
            return error
        label = f'Plan "{args.id}"' if args.id else 'Plan'
        return SubmitPlanResult(
            success=True,
            message=f'{label} with {len(args.tasks)} task(s) submitted successfully.',
        ).model_dump()

    return make_tool(
        name=SUBMIT_PLAN_TOOL,
        description=(
            'Submit the final execution plan. Use this ONLY after you have finished analyzing the codebase '
            'and are ready to submit your final plan. Each task must have at least one rule assigned.'
        ),
        input_schema=PlanSubmission,
        output_schema=SubmitPlanResult,
        handler=handler,
    )
