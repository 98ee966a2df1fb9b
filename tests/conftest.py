"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

from storyagent.ai.operations.registry import default_registry
from storyagent.ai.orchestration.state_store import InMemoryConversationStore


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def memory_store() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture(autouse=True)
def _isolate_storyagent_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in list(os.environ):
        if name.startswith("STORYAGENT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STORYAGENT_LOG_DIR", str(tmp_path / "logs"))
