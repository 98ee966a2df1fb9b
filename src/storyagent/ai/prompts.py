"""System prompt for the video project assistant."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from .operations.registry import OperationCategory, OperationDescriptor

__all__ = ["system_prompt", "MAX_CONTEXT_CHARS"]

MAX_CONTEXT_CHARS = 6_000


def system_prompt(
    *,
    operations: Iterable[OperationDescriptor],
    project_context: Mapping[str, Any] | None = None,
    locale: str | None = None,
) -> str:
    """Build the system prompt listing the operations by category."""

    sections = [
        _personality_section(),
        "## Available Operations\n\n" + _operations_section(operations),
        "## Core Workflow\n\n" + _workflow_section(),
    ]
    if project_context:
        sections.append("## Project Context\n\n" + _context_section(project_context))
    if locale:
        sections.append(f"Reply in the user's language ({locale}). Write generation prompts in English.")
    return "\n\n".join(sections)


def _personality_section() -> str:
    return (
        "You are a creative assistant helping the user build a short video project. You can inspect the "
        "project, generate images, video and audio, and edit the timeline. Be concise and concrete."
    )


def _operations_section(operations: Iterable[OperationDescriptor]) -> str:
    headings = {
        OperationCategory.READ: "### Read (runs immediately)",
        OperationCategory.GENERATION: "### Generation (costs credits, needs confirmation)",
        OperationCategory.MODIFICATION: "### Editing (needs confirmation)",
        OperationCategory.DELETION: "### Deletion (irreversible, needs confirmation)",
    }
    grouped: dict[str, list[OperationDescriptor]] = {category: [] for category in OperationCategory.ALL}
    for descriptor in operations:
        grouped.setdefault(descriptor.category, []).append(descriptor)
    lines: list[str] = []
    for category in OperationCategory.ALL:
        items = grouped.get(category) or []
        if not items:
            continue
        lines.append(headings[category])
        lines.extend(f"- **{item.name}** - {item.label}" for item in items)
        lines.append("")
    return "\n".join(lines).strip()


def _workflow_section() -> str:
    return "\n".join(
        [
            "1. Query the project (query_context, query_assets) before referencing existing assets.",
            "2. Request one operation at a time and wait for its result.",
            "3. Operations that cost credits or change the project are shown to the user for approval; "
            "if the user declines, acknowledge it and ask how to proceed instead of retrying.",
            "4. If an operation reports validation errors, fix the arguments and try again.",
        ]
    )


def _context_section(context: Mapping[str, Any]) -> str:
    text = json.dumps(dict(context), ensure_ascii=False, indent=2, default=str)
    if len(text) > MAX_CONTEXT_CHARS:
        text = text[:MAX_CONTEXT_CHARS] + "\n... (truncated)"
    return text
