"""Model-backed agents built on AgentRuntime."""
from .code_summarizer import CodeSummarizer, describe_file
from .plan_agent import PlanAgent, PlanRunState, PlanTermination, find_submitted_plan, has_submitted_plan
from .rule_summarizer import RuleSummarizer
