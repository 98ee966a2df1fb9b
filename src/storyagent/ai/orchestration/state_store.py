"""Conversation persistence: append-only messages plus mutable turn state.

Two stores implement :class:`ConversationStore`:

* :class:`InMemoryConversationStore` keeps everything in dictionaries and is
  used by tests and one-shot scripts.
* :class:`FileConversationStore` writes one directory per conversation with an
  append-only ``messages.jsonl`` log and an atomically replaced ``state.json``
  holding the status, turn checkpoint and pending action.

Both assume a single writer per conversation id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Protocol, runtime_checkable

from .types import ConversationStatus, Message, PendingAction, TurnCheckpoint

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "FileConversationStore",
]

LOGGER = logging.getLogger(__name__)

_MESSAGES_FILE = "messages.jsonl"
_STATE_FILE = "state.json"
_SAFE_ID = re.compile(r"[^A-Za-z0-9_.-]")


@runtime_checkable
class ConversationStore(Protocol):
    """Persistence contract used by the orchestration loop."""

    async def append_message(self, conversation_id: str, message: Message) -> None: ...

    async def load_messages(self, conversation_id: str) -> list[Message]: ...

    async def update_checkpoint(self, conversation_id: str, checkpoint: TurnCheckpoint) -> None: ...

    async def load_checkpoint(self, conversation_id: str) -> TurnCheckpoint | None: ...

    async def set_status(self, conversation_id: str, status: ConversationStatus) -> None: ...

    async def get_status(self, conversation_id: str) -> ConversationStatus: ...

    async def save_pending_action(self, conversation_id: str, action: PendingAction) -> None: ...

    async def load_pending_action(self, conversation_id: str) -> PendingAction | None: ...

    async def clear_pending_action(self, conversation_id: str) -> None: ...


# -----------------------------------------------------------------------------
# In-memory store
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _ConversationRecord:
    messages: list[Message] = field(default_factory=list)
    checkpoint: TurnCheckpoint | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    pending_action: PendingAction | None = None


class InMemoryConversationStore:
    """Dictionary-backed store."""

    def __init__(self) -> None:
        self._records: Dict[str, _ConversationRecord] = defaultdict(_ConversationRecord)
        self.checkpoint_writes = 0

    async def append_message(self, conversation_id: str, message: Message) -> None:
        self._records[conversation_id].messages.append(message)

    async def load_messages(self, conversation_id: str) -> list[Message]:
        return list(self._records[conversation_id].messages)

    async def update_checkpoint(self, conversation_id: str, checkpoint: TurnCheckpoint) -> None:
        self.checkpoint_writes += 1
        self._records[conversation_id].checkpoint = TurnCheckpoint.from_dict(checkpoint.to_dict())

    async def load_checkpoint(self, conversation_id: str) -> TurnCheckpoint | None:
        return self._records[conversation_id].checkpoint

    async def set_status(self, conversation_id: str, status: ConversationStatus) -> None:
        self._records[conversation_id].status = status

    async def get_status(self, conversation_id: str) -> ConversationStatus:
        return self._records[conversation_id].status

    async def save_pending_action(self, conversation_id: str, action: PendingAction) -> None:
        self._records[conversation_id].pending_action = action

    async def load_pending_action(self, conversation_id: str) -> PendingAction | None:
        return self._records[conversation_id].pending_action

    async def clear_pending_action(self, conversation_id: str) -> None:
        self._records[conversation_id].pending_action = None


# -----------------------------------------------------------------------------
# File store
# -----------------------------------------------------------------------------


class FileConversationStore:
    """Directory-per-conversation store using JSONL and JSON files."""

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir).expanduser()
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def conversation_dir(self, conversation_id: str) -> Path:
        safe_id = _SAFE_ID.sub("_", conversation_id).strip("._") or "conversation"
        return self._base_dir / safe_id

    async def append_message(self, conversation_id: str, message: Message) -> None:
        line = json.dumps(message.to_dict(), ensure_ascii=False) + "\n"
        async with self._locks[conversation_id]:
            await asyncio.to_thread(self._append_line, conversation_id, line)

    async def load_messages(self, conversation_id: str) -> list[Message]:
        payloads = await asyncio.to_thread(self._read_messages, conversation_id)
        return [Message.from_chat_param(payload) for payload in payloads]

    async def update_checkpoint(self, conversation_id: str, checkpoint: TurnCheckpoint) -> None:
        await self._update_state(conversation_id, checkpoint=checkpoint.to_dict())

    async def load_checkpoint(self, conversation_id: str) -> TurnCheckpoint | None:
        payload = (await asyncio.to_thread(self._read_state, conversation_id)).get("checkpoint")
        if not isinstance(payload, dict):
            return None
        return TurnCheckpoint.from_dict(payload)

    async def set_status(self, conversation_id: str, status: ConversationStatus) -> None:
        await self._update_state(conversation_id, status=status.value)

    async def get_status(self, conversation_id: str) -> ConversationStatus:
        raw = (await asyncio.to_thread(self._read_state, conversation_id)).get("status")
        try:
            return ConversationStatus(raw) if raw else ConversationStatus.ACTIVE
        except ValueError:
            LOGGER.warning("Unknown conversation status %r for %s", raw, conversation_id)
            return ConversationStatus.ACTIVE

    async def save_pending_action(self, conversation_id: str, action: PendingAction) -> None:
        await self._update_state(conversation_id, pending_action=action.to_dict())

    async def load_pending_action(self, conversation_id: str) -> PendingAction | None:
        payload = (await asyncio.to_thread(self._read_state, conversation_id)).get("pending_action")
        if not isinstance(payload, dict):
            return None
        return PendingAction.from_dict(payload)

    async def clear_pending_action(self, conversation_id: str) -> None:
        await self._update_state(conversation_id, pending_action=None)

    async def _update_state(self, conversation_id: str, **fields: Any) -> None:
        async with self._locks[conversation_id]:
            await asyncio.to_thread(self._merge_state, conversation_id, fields)

    # Blocking file access; only called through ``asyncio.to_thread``.

    def _append_line(self, conversation_id: str, line: str) -> None:
        path = self.conversation_dir(conversation_id) / _MESSAGES_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line)

    def _read_messages(self, conversation_id: str) -> list[Dict[str, Any]]:
        path = self.conversation_dir(conversation_id) / _MESSAGES_FILE
        if not path.exists():
            return []
        payloads: list[Dict[str, Any]] = []
        with path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    payloads.append(json.loads(line))
                except json.JSONDecodeError as exc:
                    # A torn final line is possible if the process died mid-write.
                    LOGGER.warning("Skipping unreadable message at %s:%s: %s", path, line_number, exc)
        return payloads

    def _merge_state(self, conversation_id: str, fields: Dict[str, Any]) -> None:
        state = self._read_state(conversation_id)
        state.update(fields)
        self._write_state(conversation_id, state)

    def _read_state(self, conversation_id: str) -> Dict[str, Any]:
        path = self.conversation_dir(conversation_id) / _STATE_FILE
        if not path.exists():
            return {}
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Conversation state %s is not valid JSON: %s", path, exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_state(self, conversation_id: str, state: Dict[str, Any]) -> None:
        path = self.conversation_dir(conversation_id) / _STATE_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(state, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp_path.replace(path)
