"""Rules index construction from rule files."""

from __future__ import annotations

import base64
import re
from pathlib import PurePosixPath
from typing import Sequence

from specplanner.agents.rule_summarizer import RuleSummarizer
from specplanner.errors import AppError
from specplanner.files import RepoFiles
from specplanner.schemas import RuleReference

_NON_ALNUM = re.compile(r'[^a-zA-Z0-9]+')


def build_rule_id(rule_path: str) -> str:
    """Stable id for a rule file: slug of the file stem plus a short path hash.

    Examples:
        >>> build_rule_id('docs/rules/API Style.md')
        'api-style-ZG9jcy9y'
    """
    slug = _NON_ALNUM.sub('-', PurePosixPath(rule_path).stem).strip('-').lower() or 'rule'
    digest = base64.urlsafe_b64encode(rule_path.encode('utf-8')).decode('ascii').rstrip('=')
    return f'{slug}-{digest[:8]}'


async def build_rule_reference(path: str, *, files: RepoFiles, summarizer: RuleSummarizer) -> RuleReference | AppError:
    contents = await files.read_text(path)
    if isinstance(contents, AppError):
        return contents
    summary = await summarizer.summarize(path=contents.path, content=contents.contents)
    if isinstance(summary, AppError):
        return summary
    return RuleReference(
        id=build_rule_id(contents.path),
        description=summary.description,
        path=contents.path,
        tags=summary.tags,
    )


async def build_rule_references(
    paths: Sequence[str],
    *,
    files: RepoFiles,
    summarizer: RuleSummarizer,
) -> list[RuleReference] | AppError:
    """Summarize every rule file into a RuleReference; the first failure aborts."""
    rules: list[RuleReference] = []
    for path in paths:
        reference = await build_rule_reference(path, files=files, summarizer=summarizer)
        if isinstance(reference, AppError):
            return reference
        rules.append(reference)
    return rules
