"""Placeholder substitution for CLI invocation templates and prompts."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Callable, Mapping

TEMPLATE_FIELDS = ("prompt", "model", "cwd", "stepName", "prdPath", "memoryPath")

_PLACEHOLDER = re.compile(r"\{\{\{?\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}?\}\}")

CompiledTemplate = Callable[[Mapping[str, object]], str]


@lru_cache(maxsize=256)
def compile_template(template: str) -> CompiledTemplate:
    """Compile ``template`` once into a render function.

    ``{{name}}`` and ``{{{name}}}`` placeholders are replaced verbatim (no
    escaping). Unknown or missing fields render as an empty string.
    """
    pieces = _PLACEHOLDER.split(template)
    # split() alternates literal text and captured field names
    literals = pieces[0::2]
    names = pieces[1::2]

    def render(data: Mapping[str, object]) -> str:
        out = [literals[0]]
        for name, literal in zip(names, literals[1:]):
            value = data.get(name) if name in TEMPLATE_FIELDS else None
            out.append("" if value is None else str(value))
            out.append(literal)
        return "".join(out)

    return render


def render_template(template: str, data: Mapping[str, object]) -> str:
    """Render a Mustache-style template against the fixed field set."""
    return compile_template(template)(data)


def has_prompt_placeholder(template: str) -> bool:
    return any(
        match.group(1) == "prompt" for match in _PLACEHOLDER.finditer(template)
    )
