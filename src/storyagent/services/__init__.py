"""Persistent settings for the agent."""

from .settings import SecretVault, Settings, SettingsStore, redact_secret

__all__ = ["SecretVault", "Settings", "SettingsStore", "redact_secret"]
