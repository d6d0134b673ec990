"""Prompt renderer for the versioned templates under ``specplanner/prompts``.

Templates use ``${name}`` placeholders. Values may be any object and are
rendered with ``str()``, so callers pass limits and ids as-is. Every
placeholder must be supplied; an unknown name in the mapping is ignored.
"""

from __future__ import annotations

from string import Template
from typing import Any, Mapping


class PromptRenderer:
    def render(self, template: str, variables: Mapping[str, Any]) -> str:
        """Fill ``template`` from ``variables``.

        Raises:
            ValueError: naming every placeholder that ``variables`` does not cover.
        """
        compiled = Template(template)
        missing = sorted(set(compiled.get_identifiers()) - set(variables))
        if missing:
            raise ValueError(f'Missing prompt variable(s): {", ".join(missing)}')
        return compiled.substitute({name: str(value) for name, value in variables.items()})
