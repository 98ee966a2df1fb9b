"""Tests for the storyagent-chat command line entry point."""

from __future__ import annotations

import asyncio
import importlib
import io
import json
import sys
from pathlib import Path
from typing import Any

import pytest

from storyagent.ai.client import AIClient
from storyagent.ai.operations.registry import default_registry
from storyagent.ai.orchestration.dispatcher import ExecutionDispatcher
from storyagent.ai.orchestration.loop import OrchestrationLoop
from storyagent.ai.orchestration.state_store import FileConversationStore
from storyagent.scripts import chat
from storyagent.services.settings import Settings

from tests.helpers import ScriptedModelClient, text_turn, tool_turn

_HANDLER_MODULE = '''
CALLS = []


async def delete_asset(arguments):
    CALLS.append(dict(arguments))
    return {"deleted": len(arguments.get("assetIds", []))}


def handlers():
    return {"delete_asset": delete_asset}


NOT_A_MAPPING = 42
'''


class _ClosableClient(ScriptedModelClient):
    def __init__(self, turns: Any) -> None:
        super().__init__(turns)
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def handler_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    module_dir = tmp_path / "handlers_pkg"
    module_dir.mkdir()
    (module_dir / "storyagent_cli_handlers.py").write_text(_HANDLER_MODULE, encoding="utf-8")
    monkeypatch.syspath_prepend(str(module_dir))
    monkeypatch.delitem(sys.modules, "storyagent_cli_handlers", raising=False)
    return "storyagent_cli_handlers"


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(chat, "setup_logging", lambda *args, **kwargs: None)


def _install_client(monkeypatch: pytest.MonkeyPatch, client: _ClosableClient) -> None:
    def _build(settings: Settings, handlers: Any, *, data_dir: Path | None = None):
        registry = default_registry()
        loop = OrchestrationLoop(
            client,
            ExecutionDispatcher(handlers, registry=registry),
            registry=registry,
            store=FileConversationStore(data_dir or settings.conversations_dir()),
            config=settings.runner_config(),
        )
        return loop, client

    monkeypatch.setattr(chat, "_build_loop", _build)


def _events(output: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


def test_message_streams_ndjson_events(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    client = _ClosableClient([text_turn("Hello", " there")])
    _install_client(monkeypatch, client)

    code = chat.main(["Hi", "--data-dir", str(tmp_path / "data"), "--settings", str(tmp_path / "settings.json")])

    events = _events(capsys.readouterr().out)
    assert code == 0
    assert [event["type"] for event in events] == ["iteration_start", "content", "content", "complete"]
    assert events[-1]["data"]["content"] == "Hello there"
    assert client.closed is True
    assert (tmp_path / "data" / "default" / "messages.jsonl").exists()


def test_gate_then_approve_across_invocations(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
    handler_module: str,
) -> None:
    common = [
        "--data-dir",
        str(tmp_path / "data"),
        "--settings",
        str(tmp_path / "settings.json"),
        "--conversation",
        "poster",
        "--handlers",
        f"{handler_module}:handlers",
    ]
    _install_client(
        monkeypatch, _ClosableClient([tool_turn("delete_asset", {"assetIds": ["a1"]}, call_id="call_del")])
    )
    assert chat.main(["Delete the poster", *common]) == 0
    gated = _events(capsys.readouterr().out)
    assert gated[-1]["data"]["reason"] == "pending_confirmation"

    _install_client(monkeypatch, _ClosableClient([text_turn("Deleted.")]))
    code = chat.main(["--approve", "call_del", "--arguments", '{"assetIds": ["a1", "a2"]}', *common])

    resumed = _events(capsys.readouterr().out)
    assert code == 0
    assert [event["type"] for event in resumed][:2] == ["function_start", "function_result"]
    assert resumed[1]["data"]["summary"] == "Deleted 2 asset(s)"
    assert importlib.import_module(handler_module).CALLS == [{"assetIds": ["a1", "a2"]}]


def test_reject_resumes_from_the_stored_pending_action(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    tmp_path: Path,
    handler_module: str,
) -> None:
    common = ["--data-dir", str(tmp_path / "data"), "--settings", str(tmp_path / "settings.json")]
    common += ["--handlers", f"{handler_module}:handlers"]
    _install_client(
        monkeypatch, _ClosableClient([tool_turn("delete_asset", {"assetIds": ["a1"]}, call_id="call_del")])
    )
    assert chat.main(["Delete the poster", *common]) == 0
    capsys.readouterr()

    client = _ClosableClient([text_turn("Kept it.")])
    _install_client(monkeypatch, client)
    code = chat.main(["--reject", "call_del", "--feedback", "Keep the poster", *common])

    resumed = _events(capsys.readouterr().out)
    assert code == 0
    assert resumed[0]["data"]["userRejected"] is True
    assert resumed[-1]["data"]["content"] == "Kept it."
    sent = client.calls[0]["messages"]
    assert sent[-1].role == "user" and sent[-1].content == "Keep the poster"
    assert importlib.import_module(handler_module).CALLS == []


def test_resume_with_unknown_call_id_fails(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    _install_client(monkeypatch, _ClosableClient([]))

    code = chat.main(["--approve", "call_nope", "--data-dir", str(tmp_path), "--settings", str(tmp_path / "s.json")])

    events = _events(capsys.readouterr().out)
    assert code == 1
    assert [event["type"] for event in events] == ["error", "complete"]
    assert events[0]["data"]["error"] == "resume_mismatch"


def test_error_turn_returns_non_zero(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    _install_client(monkeypatch, _ClosableClient([tool_turn("teleport", {})]))

    code = chat.main(["Go", "--data-dir", str(tmp_path), "--settings", str(tmp_path / "settings.json")])

    events = _events(capsys.readouterr().out)
    assert code == 1
    assert events[-1]["data"]["reason"] == "error"


def test_empty_stdin_is_rejected(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(sys, "stdin", io.StringIO("  \n"))

    assert chat.main([]) == 1
    assert "No message provided." in capsys.readouterr().err


def test_arguments_require_approve() -> None:
    with pytest.raises(SystemExit):
        chat.main(["--reject", "call_1", "--arguments", "{}"])


def test_arguments_must_be_an_object() -> None:
    with pytest.raises(SystemExit):
        chat.main(["--approve", "call_1", "--arguments", "[1, 2]"])


def test_load_handlers_accepts_factories(handler_module: str) -> None:
    handlers = chat._load_handlers(f"{handler_module}:handlers")

    assert set(handlers) == {"delete_asset"}


@pytest.mark.parametrize("suffix", [":NOT_A_MAPPING", "", ":missing"])
def test_load_handlers_rejects_bad_targets(handler_module: str, suffix: str) -> None:
    with pytest.raises((TypeError, AttributeError)):
        chat._load_handlers(f"{handler_module}{suffix}")


def test_build_loop_wires_settings(tmp_path: Path) -> None:
    settings = Settings(base_url="http://local", api_key="k", max_tool_iterations=4, tool_timeout=3.0)

    loop, client = chat._build_loop(settings, {}, data_dir=tmp_path)

    assert isinstance(client, AIClient)
    assert loop.config.max_iterations == 4
    assert isinstance(loop.store, FileConversationStore)
    assert loop.store.base_dir == tmp_path
    asyncio.run(client.aclose())
