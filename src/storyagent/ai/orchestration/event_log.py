"""Debug event logging for orchestration turns."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from ...utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)


def _default_event_dir() -> Path:
    log_path = logging_utils.get_log_path()
    if log_path is not None:
        return log_path.parent / "events"
    return Path.home() / ".storyagent" / "logs" / "events"


@dataclass(slots=True)
class _NullTurnEventLogRun:
    """No-op implementation used when event logging is disabled."""

    path: Path | None = None

    def log_iteration(self, *_: Any, **__: Any) -> None:
        return

    def log_assistant_message(self, *_: Any, **__: Any) -> None:
        return

    def log_dispatch(self, *_: Any, **__: Any) -> None:
        return

    def log_pending_action(self, *_: Any, **__: Any) -> None:
        return

    def log_decision(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return

    def close(self) -> None:
        return


class TurnEventLogRun:
    """Writes structured JSONL entries for one orchestration turn."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self._finalized = False
        self._write_entry("start", context)

    def close(self) -> None:
        if self._file.closed:
            return
        if not self._finalized:
            self._write_entry("aborted", {"status": "aborted"})
            self._finalized = True
        self._file.close()

    def log_iteration(self, *, iteration: int, message_count: int) -> None:
        self._write_entry("iteration", {"iteration": iteration, "message_count": message_count})

    def log_assistant_message(self, *, iteration: int, message: Mapping[str, Any]) -> None:
        self._write_entry("assistant", {"iteration": iteration, "message": dict(message)})

    def log_dispatch(
        self,
        *,
        iteration: int,
        operation: str,
        arguments: Mapping[str, Any] | None,
        result: Mapping[str, Any],
    ) -> None:
        self._write_entry(
            "dispatch",
            {
                "iteration": iteration,
                "operation": operation,
                "arguments": dict(arguments or {}),
                "result": dict(result),
            },
        )

    def log_pending_action(self, *, iteration: int, action: Mapping[str, Any]) -> None:
        self._write_entry("pending_action", {"iteration": iteration, "action": dict(action)})

    def log_decision(self, *, action: Mapping[str, Any]) -> None:
        """Record a pending action once the user or a newer message has settled it."""
        self._write_entry("decision", {"action": dict(action)})

    def log_completion(self, *, reason: str, iterations: int, content: str = "") -> None:
        if self._finalized:
            return
        self._write_entry(
            "completion",
            {"status": "success", "reason": reason, "iterations": iterations, "content": content},
        )
        self._finalized = True
        self.close()

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            return
        payload: dict[str, Any] = {"status": "failure", "message": message}
        if details:
            payload["details"] = dict(details)
        self._write_entry("failure", payload)
        self._finalized = True
        self.close()

    def _write_entry(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        entry: dict[str, Any] = {
            "event": event,
            "timestamp": time.time(),
        }
        if payload:
            for key, value in payload.items():
                entry[key] = self._safe_json(value)
        json.dump(entry, self._file, ensure_ascii=False)
        self._file.write("\n")
        self._file.flush()

    def _safe_json(self, value: Any, *, depth: int = 0) -> Any:
        if depth > 6:
            return repr(value)
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Mapping):
            return {str(key): self._safe_json(val, depth=depth + 1) for key, val in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [self._safe_json(item, depth=depth + 1) for item in value]
        to_dict = getattr(value, "to_dict", None)
        if callable(to_dict):
            return self._safe_json(to_dict(), depth=depth + 1)
        return repr(value)


TurnEventLog = TurnEventLogRun | _NullTurnEventLogRun


class TurnEventLogger:
    """Factory for per-turn event logs when debug logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _default_event_dir()

    def start_run(
        self,
        *,
        run_id: str,
        conversation_id: str | None,
        prompt: str | None,
        history: Sequence[Mapping[str, Any]] | None = None,
    ) -> TurnEventLog:
        if not self.enabled:
            return _NullTurnEventLogRun()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(run_id)
            context = {
                "run_id": run_id,
                "conversation_id": conversation_id,
                "prompt": prompt,
                "history": list(history or ()),
            }
            log_run = TurnEventLogRun(path, context=context)
            LOGGER.debug("Turn event log started: %s", path)
            return log_run
        except OSError:
            LOGGER.debug("Failed to start turn event log", exc_info=True)
            return _NullTurnEventLogRun()

    def _allocate_path(self, run_id: str) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        safe_run_id = "".join(ch for ch in run_id if ch.isalnum())[:12] or "run"
        return self._base_dir / f"turn-{timestamp}-{safe_run_id}.jsonl"


__all__ = [
    "TurnEventLog",
    "TurnEventLogger",
    "TurnEventLogRun",
]
