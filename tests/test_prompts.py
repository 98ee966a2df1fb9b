"""Tests for the system prompt builder."""

from __future__ import annotations

from storyagent.ai import prompts
from storyagent.ai.operations.registry import default_registry


def test_system_prompt_groups_operations_by_category():
    content = prompts.system_prompt(operations=default_registry())

    assert "## Available Operations" in content
    assert "## Core Workflow" in content
    read_heading = content.index("### Read")
    deletion_heading = content.index("### Deletion")
    assert read_heading < content.index("**query_assets**") < deletion_heading
    assert content.index("**delete_asset**") > deletion_heading
    assert "## Project Context" not in content


def test_system_prompt_includes_project_context_and_locale():
    content = prompts.system_prompt(
        operations=default_registry(),
        project_context={"projectName": "Lighthouse"},
        locale="fr-FR",
    )

    assert '"projectName": "Lighthouse"' in content
    assert "fr-FR" in content


def test_long_project_context_is_truncated():
    context = {"notes": "x" * (prompts.MAX_CONTEXT_CHARS * 2)}

    content = prompts.system_prompt(operations=[], project_context=context)

    assert content.endswith("... (truncated)")
