"""Error values for the planning core.

Two parallel channels, neither of which is raised across a component boundary:

- AppError: run-level failures returned to the caller of an orchestrator.
- ToolError: failures local to one tool call. They are formatted into a string
  and handed back to the model so it can recover in-context.

Fallible functions return ``T | AppError`` (or ``T | ToolError``) and callers
branch with ``isinstance``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class AppErrorCode(str, Enum):
    """Closed set of run-level error codes."""

    FS_ERROR = 'FS_ERROR'
    FS_NOT_FOUND = 'FS_NOT_FOUND'
    CONFIG_NOT_FOUND = 'CONFIG_NOT_FOUND'
    CONFIG_PARSE_ERROR = 'CONFIG_PARSE_ERROR'
    GIT_ERROR = 'GIT_ERROR'
    GIT_NOT_REPO = 'GIT_NOT_REPO'
    GIT_COMMAND_FAILED = 'GIT_COMMAND_FAILED'
    LLM_ERROR = 'LLM_ERROR'
    VALIDATION_ERROR = 'VALIDATION_ERROR'
    UNKNOWN = 'UNKNOWN'


class ToolErrorCode(str, Enum):
    """Tool-level error codes."""

    INVALID_ARGS = 'INVALID_ARGS'
    NOT_FOUND = 'NOT_FOUND'
    IO_ERROR = 'IO_ERROR'
    INTERNAL = 'INTERNAL'


@dataclass(frozen=True)
class AppError:
    """A run-level failure.

    Attributes:
        code: Stable error category.
        message: Human-readable description of what failed.
        details: Optional context for debugging (never shown to the model).
    """

    code: AppErrorCode
    message: str
    details: Any = None

    def __str__(self) -> str:
        return f'[{self.code.value}] {self.message}'


@dataclass(frozen=True)
class ToolError:
    """A failure produced by a single tool call."""

    code: ToolErrorCode
    message: str
    details: Any = None


_IO_ERROR_CODES = {
    AppErrorCode.FS_ERROR,
    AppErrorCode.FS_NOT_FOUND,
    AppErrorCode.CONFIG_NOT_FOUND,
    AppErrorCode.CONFIG_PARSE_ERROR,
}


def map_app_error_to_tool_error(error: AppError) -> ToolError:
    """Classify an AppError raised by a collaborator into a ToolError.

    Filesystem and config codes become IO_ERROR, validation becomes
    INVALID_ARGS, anything else is INTERNAL. The original error is kept in
    ``details``.
    """
    if error.code in _IO_ERROR_CODES:
        return ToolError(ToolErrorCode.IO_ERROR, error.message, error)
    if error.code == AppErrorCode.VALIDATION_ERROR:
        return ToolError(ToolErrorCode.INVALID_ARGS, error.message, error)
    return ToolError(ToolErrorCode.INTERNAL, error.message, error)


def format_tool_error(tool_name: str, error: ToolError) -> str:
    """Render a ToolError as the short string the model sees as the tool result."""
    if error.message:
        return error.message
    return f'Tool "{tool_name}" failed ({error.code.value}).'
