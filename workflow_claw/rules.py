"""Guidance documents and selection of the ones relevant to a step."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from .constants import RULE_CONTEXT_CHARS, RULE_SELECT_SUFFIX
from .contracts import Provider, RuleFile, RuleHeader, Step
from .runner import AgentCliRunner, CliRunRequest

logger = logging.getLogger(__name__)

HEADER_MARKER = "--------------"


def parse_rule_text(text: str, file_path: str = "") -> Optional[RuleFile]:
    """Parse a rule document.

    The header sits between the first two marker lines and holds ``Name:``,
    ``Files:`` and ``Description:`` keys. Documents without a name or a
    description are rejected.
    """
    parts = [part.strip() for part in text.split(HEADER_MARKER)]
    if len(parts) < 3:
        return None
    header_block = parts[1]
    body = f"\n{HEADER_MARKER}\n".join(parts[2:]).strip()

    fields: Dict[str, str] = {}
    for line in header_block.splitlines():
        key, sep, value = line.partition(":")
        if not key.strip() or not sep:
            continue
        fields[key.strip().lower()] = value.strip()

    name = fields.get("name", "")
    description = fields.get("description", "")
    if not name or not description:
        return None
    files = [v.strip() for v in fields.get("files", "").split(",") if v.strip()]
    return RuleFile(
        file_path=file_path,
        header=RuleHeader(name=name, description=description, files=files),
        body=body,
    )


def parse_rule_file(path: str | Path) -> Optional[RuleFile]:
    path = Path(path)
    return parse_rule_text(path.read_text(encoding="utf-8"), str(path))


def list_rules(rules_dir: str | Path) -> List[RuleFile]:
    """Return every valid ``*.md`` rule in ``rules_dir``."""
    rules_dir = Path(rules_dir)
    if not rules_dir.is_dir():
        return []
    rules = []
    for entry in sorted(rules_dir.iterdir()):
        if entry.suffix != ".md" or not entry.is_file():
            continue
        rule = parse_rule_file(entry)
        if rule is None:
            logger.debug(f"Skipping rule without name/description: {entry}")
            continue
        rules.append(rule)
    return rules


def parse_rule_names(raw: str) -> Optional[List[str]]:
    """Return ``raw`` as a list of names, or ``None`` if it is not one."""
    try:
        value = json.loads(raw.strip())
    except ValueError:
        return None
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return value
    return None


def build_selection_prompt(
    step: Step, prd_text: str, memory_text: str, rules: List[RuleFile]
) -> str:
    header_list = "\n".join(
        f"- {rule.header.name}: {rule.header.description}" for rule in rules
    )
    return (
        "You are selecting relevant rules for a step.\n\n"
        f"Step: {step.name}\n"
        f"Description: {step.description}\n\n"
        f"PRD Summary:\n{prd_text[:RULE_CONTEXT_CHARS]}\n\n"
        f"MEMORY Summary:\n{memory_text[:RULE_CONTEXT_CHARS]}\n\n"
        f"Rules:\n{header_list}\n\n"
        "Return JSON array of rule names to include."
    )


class RuleSelector:
    """Asks the step's agent CLI which rules apply; falls back to all of them."""

    def __init__(self, runner: AgentCliRunner) -> None:
        self._runner = runner

    async def select(
        self,
        provider: Provider,
        folder_path: str,
        step: Step,
        prd_text: str,
        memory_text: str,
        rules: List[RuleFile],
        env: Optional[Dict[str, str]] = None,
    ) -> List[RuleFile]:
        if not rules:
            return []

        request = CliRunRequest(
            cli_command=provider.cli_command,
            template=provider.template,
            prompt=build_selection_prompt(step, prd_text, memory_text, rules),
            model=step.model or provider.default_model,
            cwd=folder_path,
            step_name=f"{step.name}{RULE_SELECT_SUFFIX}",
            env=env or {},
        )
        result = await self._runner.run(request)

        names = parse_rule_names(result.stdout)
        if names is None:
            logger.warning(
                f"Rule selection for step {step.name} returned no usable list; "
                "using all rules"
            )
            return list(rules)
        wanted = set(names)
        selected = [rule for rule in rules if rule.header.name in wanted]
        logger.debug(f"Selected {len(selected)}/{len(rules)} rules for {step.name}")
        return selected
