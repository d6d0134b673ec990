"""Prompt loader and version selector."""

from __future__ import annotations

from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


class PromptNotFoundError(RuntimeError):
    pass


def load_prompt(module: str, version: str = 'v1') -> str:
    """Load a prompt template by module and version.

    Args:
        module: Prompt module name (e.g. "plan_agent").
        version: Version folder name (e.g. "v1").

    Returns:
        Prompt text.

    Raises:
        PromptNotFoundError: If the prompt file is missing.
    """
    prompt_path = BASE_DIR / module / version / 'prompt.md'
    if not prompt_path.exists():
        raise PromptNotFoundError(f'Prompt not found: {module}/{version}')
    return prompt_path.read_text(encoding='utf-8')
