"""Logging for storyagent processes.

Records carry the conversation and run they belong to. The orchestration loop
logs through :func:`turn_logger`, which attaches both ids; records from
anywhere else show ``-``. Console output always goes to stderr because the
CLI writes the NDJSON event stream to stdout.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Any, MutableMapping, TextIO

__all__ = ["setup_logging", "turn_logger", "TurnLogAdapter", "get_log_path"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(conversation_id)s/%(run_id)s | %(message)s"
_DEFAULT_LOG_DIR = Path.home() / ".storyagent" / "logs"
_LOG_FILE_NAME = "storyagent.log"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_LOG_PATH: Path | None = None


class _TurnFieldsFilter(logging.Filter):
    """Fills the turn fields on records logged outside a turn."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "conversation_id"):
            record.conversation_id = "-"
        if not hasattr(record, "run_id"):
            record.run_id = "-"
        return True


class TurnLogAdapter(logging.LoggerAdapter):
    """Logger adapter stamping every record with one turn's ids."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def turn_logger(logger: logging.Logger, *, conversation_id: str | None, run_id: str) -> TurnLogAdapter:
    """Adapter for the records of one ``run``/``resume`` call."""

    return TurnLogAdapter(logger, {"conversation_id": conversation_id or "-", "run_id": run_id[:8]})


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    stream: TextIO | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
) -> Path:
    """Install the rotating file handler and, optionally, a stderr console handler.

    ``level`` accepts a number or a name such as ``"debug"``; when omitted it
    falls back to ``STORYAGENT_LOG_LEVEL`` and then ``INFO``. Calling this
    again replaces the handlers installed by the previous call.
    """

    global _LOG_PATH
    resolved = _resolve_level(level)
    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    turn_fields = _TurnFieldsFilter()

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler(stream or sys.stderr))
    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        handler.addFilter(turn_fields)

    logging.basicConfig(level=resolved, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_external_loggers(resolved)

    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """The log file installed by :func:`setup_logging`, if any."""

    return _LOG_PATH


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get("STORYAGENT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.environ.get("STORYAGENT_LOG_LEVEL") or logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _quiet_external_loggers(root_level: int) -> None:
    # Transport libraries log every request at INFO.
    quiet_level = max(root_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)
