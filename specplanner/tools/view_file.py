"""viewFile: read a file inside the repository."""

from __future__ import annotations

from pydantic import BaseModel, Field

from specplanner.errors import AppError, ToolError, map_app_error_to_tool_error
from specplanner.files import RepoFiles
from specplanner.tools.base import Tool, make_tool

VIEW_FILE_TOOL = 'viewFile'


class ViewFileArgs(BaseModel):
    path: str = Field(min_length=1, description='File path, absolute or relative to the repository root.')


class ViewFileResult(BaseModel):
    path: str
    contents: str
    truncated: bool = False


def create_view_file_tool(files: RepoFiles) -> Tool[ViewFileArgs]:
    async def handler(args: ViewFileArgs) -> dict | ToolError:
        result = await files.read_text(args.path)
        if isinstance(result, AppError):
            return map_app_error_to_tool_error(result)
        return ViewFileResult(path=result.path, contents=result.contents, truncated=result.truncated).model_dump()

    return make_tool(
        name=VIEW_FILE_TOOL,
        description='Read a file within the repository and return its contents.',
        input_schema=ViewFileArgs,
        output_schema=ViewFileResult,
        handler=handler,
    )
