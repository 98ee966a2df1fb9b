"""AI client, operation catalog and orchestration loop."""

from .client import AIClient, ClientSettings

__all__ = ["AIClient", "ClientSettings"]
