"""LLM adapters and the tool loop runtime.

Rules:
- Backends only translate requests and responses. No tool execution there.
- The tool loop lives in ``loop.py`` and is the only place tools are dispatched.
- Provider selection (``registry.py``) reads Settings and holds no state.
"""

from .base import (
    AgentMessage,
    AgentRuntime,
    BackendError,
    ChatBackend,
    ChatRequest,
    ChatResponse,
    ForcedTool,
    GenerateObjectResult,
    GenerateTextResult,
    PrepareStepContext,
    RuntimeStep,
    RuntimeToolCall,
    RuntimeToolResult,
    RuntimeUsage,
    StepOverrides,
)
from .loop import ToolLoopRuntime
from .mock import ScriptedBackend
from .openai_chat import OpenAIChatBackend, OpenAIChatConfig
from .openai_responses import OpenAIResponsesBackend, OpenAIResponsesConfig
from .registry import create_agent_runtime
