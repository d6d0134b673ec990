"""Model-callable tools.

Registries are built per run from explicit inputs (rules index, repo files);
there is no module-level registry.
"""

from specplanner.files import RepoFiles
from specplanner.schemas import RulesIndex

from .base import Tool, ToolRegistry, create_tool_registry, make_tool, tool_json_schema
from .lookup_rules import LOOKUP_RULES_TOOL, create_lookup_rules_tool
from .submit_plan import SUBMIT_PLAN_TOOL, create_submit_plan_tool
from .view_file import VIEW_FILE_TOOL, create_view_file_tool


def create_default_registry(*, rules_index: RulesIndex, files: RepoFiles) -> ToolRegistry:
    """Registry holding lookupRules, viewFile and submitPlan for one run."""
    return create_tool_registry(
        [
            create_lookup_rules_tool(rules_index),
            create_view_file_tool(files),
            create_submit_plan_tool(rules_index),
        ]
    )
