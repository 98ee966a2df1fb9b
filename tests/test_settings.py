"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from storyagent.services.settings import SecretVault, Settings, SettingsStore, redact_secret


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "key"))

    assert store.load() == Settings()


def test_save_and_load_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = Settings(
        base_url="https://example.com/v1",
        api_key="super-secret",
        model="gpt-4.1-mini",
        organization="acme",
        default_headers={"X-Test": "1"},
        metadata={"env": "dev"},
        max_tool_iterations=12,
        feed_validation_errors=False,
    )

    SettingsStore(path).save(original)
    reloaded = SettingsStore(path).load()

    assert reloaded == original


def test_api_key_is_encrypted_on_disk(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(api_key="super-secret"))

    raw = path.read_text(encoding="utf-8")
    payload = json.loads(raw)

    assert "super-secret" not in raw
    assert "api_key" not in payload
    assert payload["api_key_ciphertext"].startswith("fernet:")
    assert payload["version"] == 1
    assert path.with_suffix(".key").exists()


def test_load_legacy_plaintext_api_key(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"base_url": "https://old", "api_key": "plain-key", "model": "gpt-3.5"}),
        encoding="utf-8",
    )

    loaded = SettingsStore(target).load()

    assert loaded.api_key == "plain-key"
    assert loaded.base_url == "https://old"
    migrated = json.loads(target.read_text(encoding="utf-8"))
    assert "api_key" not in migrated
    assert migrated["api_key_ciphertext"]


def test_undecryptable_key_loads_as_empty(tmp_path: Path) -> None:
    target = tmp_path / "settings.json"
    target.write_text(
        json.dumps({"version": 1, "model": "m", "api_key_ciphertext": "fernet:not-a-token"}),
        encoding="utf-8",
    )

    loaded = SettingsStore(target).load()

    assert loaded.api_key == ""
    assert loaded.model == "m"


def test_vault_rejects_unknown_backend(tmp_path: Path) -> None:
    vault = SecretVault(key_path=tmp_path / "key")

    with pytest.raises(ValueError):
        vault.decrypt("dpapi:abc")
    assert vault.decrypt(vault.encrypt("token")) == "token"


def test_env_overrides_take_precedence(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(base_url="https://local", api_key="abc"))
    monkeypatch.setenv("STORYAGENT_BASE_URL", "https://env-base")
    monkeypatch.setenv("STORYAGENT_API_KEY", "env-key")
    monkeypatch.setenv("STORYAGENT_MAX_TOOL_ITERATIONS", "7")
    monkeypatch.setenv("STORYAGENT_TOOL_TIMEOUT", "2.5")
    monkeypatch.setenv("STORYAGENT_DEBUG_EVENT_LOGGING", "yes")

    overridden = SettingsStore(path).load()

    assert overridden.base_url == "https://env-base"
    assert overridden.api_key == "env-key"
    assert overridden.max_tool_iterations == 7
    assert overridden.tool_timeout == 2.5
    assert overridden.debug_event_logging is True


def test_invalid_numeric_env_override_is_ignored(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("STORYAGENT_MAX_TOOL_ITERATIONS", "lots")

    loaded = SettingsStore(tmp_path / "settings.json").load()

    assert loaded.max_tool_iterations == Settings().max_tool_iterations


def test_cli_overrides_skip_none(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json")

    loaded = store.load(overrides={"model": None, "temperature": 0.9, "unknown": 1})

    assert loaded.model == Settings().model
    assert loaded.temperature == 0.9


def test_client_settings_and_runner_config() -> None:
    settings = Settings(
        base_url="http://local",
        api_key="k",
        model="stub",
        max_retries=3,
        max_tool_iterations=0,
        checkpoint_interval=-1,
        metadata={"app": "story"},
    )

    client = settings.client_settings()
    runner = settings.runner_config()

    assert client.base_url == "http://local"
    assert client.model == "stub"
    assert client.max_retries == 3
    assert client.metadata == {"app": "story"}
    assert client.default_headers is None
    assert runner.max_iterations == 1
    assert runner.checkpoint_interval == 0.0


def test_conversations_dir_uses_data_dir(tmp_path: Path) -> None:
    assert Settings(data_dir=str(tmp_path)).conversations_dir() == tmp_path / "conversations"
    assert Settings().conversations_dir().name == "conversations"


@pytest.mark.parametrize(
    ("value", "expected"),
    [("", ""), ("abcd", "****"), ("sk-123456", "sk*****56")],
)
def test_redact_secret(value: str, expected: str) -> None:
    assert redact_secret(value) == expected
