"""Repository-confined file access.

The repo root is an explicit constructor argument; nothing here reads the
process working directory after construction. Paths handed in by the model are
resolved against the root and rejected when they point outside of it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from specplanner.errors import AppError, AppErrorCode

DEFAULT_MAX_CHARS = 100_000


@dataclass(frozen=True)
class FileContents:
    path: str
    contents: str
    truncated: bool = False


class RepoFiles:
    """Read-only view of the files under one repository root."""

    def __init__(self, repo_root: str | Path, *, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self.repo_root = Path(repo_root).resolve()
        self.max_chars = max_chars

    def to_repo_relative(self, path: str) -> str | AppError:
        """Normalize ``path`` (absolute or root-relative) to a POSIX repo-relative path."""
        if not path or not path.strip():
            return AppError(AppErrorCode.VALIDATION_ERROR, 'path is required')

        candidate = Path(path.strip())
        if not candidate.is_absolute():
            candidate = self.repo_root / candidate
        resolved = candidate.resolve()

        try:
            relative = resolved.relative_to(self.repo_root)
        except ValueError:
            return AppError(
                AppErrorCode.VALIDATION_ERROR,
                f'Path {path} is outside the repository root',
                {'path': path, 'repo_root': str(self.repo_root)},
            )
        if relative == Path('.'):
            return AppError(AppErrorCode.VALIDATION_ERROR, f'Path {path} is the repository root, not a file')
        return relative.as_posix()

    async def read_text(self, path: str) -> FileContents | AppError:
        relative = self.to_repo_relative(path)
        if isinstance(relative, AppError):
            return relative
        return await asyncio.to_thread(self._read, relative)

    def _read(self, relative: str) -> FileContents | AppError:
        target = self.repo_root / relative
        try:
            text = target.read_text(encoding='utf-8', errors='replace')
        except FileNotFoundError:
            return AppError(AppErrorCode.FS_NOT_FOUND, f'File not found: {relative}', {'path': relative})
        except OSError as exc:
            return AppError(
                AppErrorCode.FS_ERROR,
                f'Unable to read file at {relative}: {exc.strerror or exc}',
                {'path': relative},
            )

        if len(text) > self.max_chars:
            return FileContents(path=relative, contents=text[: self.max_chars], truncated=True)
        return FileContents(path=relative, contents=text)
