"""File-backed raw memory storage: permanent notes, daily logs, conversations.

Layout under ``data_dir``::

    memory/<tenant>/MEMORY.md              permanent notes (evergreen)
    memory/<tenant>/YYYY-MM-DD.md          daily logs (decayed by age)
    conversations/<tenant>/<channel>.jsonl append-only message logs
    sessions/<session>.jsonl               issue-refinement sessions

Conversation logs are only ever appended to, except by ``replace_all``
(used by compaction), which swaps the whole file in one ``os.replace``.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo

from memoria.rag.decay import NOTES_FILENAME

logger = logging.getLogger("memoria.store")

_ROLES = ("user", "assistant")
_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")
DAILY_LOG_SEPARATOR = "\n\n---\n\n"


@dataclass
class ConversationMessage:
    role: str  # user | assistant
    content: str
    timestamp: str
    user_id: str | None = None
    username: str | None = None

    def speaker(self) -> str:
        """Display name: the author's username, else a role label."""
        if self.username:
            return self.username
        return "User" if self.role == "user" else "Assistant"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.username is not None:
            data["username"] = self.username
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ConversationMessage:
        """Validate and build a message from a decoded JSON object.

        Raises:
            ValueError: If *data* does not have the message shape.
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")
        role = data.get("role")
        content = data.get("content")
        if role not in _ROLES:
            raise ValueError(f"invalid role {role!r}")
        if not isinstance(content, str):
            raise ValueError("content must be a string")
        user_id = data.get("userId")
        username = data.get("username")
        return cls(
            role=role,
            content=content,
            timestamp=str(data.get("timestamp", "")),
            user_id=str(user_id) if user_id is not None else None,
            username=str(username) if username is not None else None,
        )

    @classmethod
    def now(cls, role: str, content: str, **kwargs: Any) -> ConversationMessage:
        """Build a message stamped with the current UTC time."""
        stamp = datetime.now(ZoneInfo("UTC")).isoformat()
        return cls(role=role, content=content, timestamp=stamp, **kwargs)


class MemoryStore:
    """Raw log storage keyed by tenant (guild/workspace) and channel.

    Args:
        data_dir: Root directory for all memory files (stored absolute, so
            enumerated paths are absolute too).
        tz: Timezone that decides what "today" is for daily logs.
        clock: Returns the current time (tests inject a fixed clock).
    """

    def __init__(
        self,
        data_dir: Path | str,
        tz: tzinfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.data_dir = Path(data_dir).resolve()
        self.tz = tz or ZoneInfo("UTC")
        self._clock = clock or (lambda: datetime.now(self.tz))
        self._locks: dict[tuple[str, str], threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def memory_dir(self, tenant: str) -> Path:
        return self.data_dir / "memory" / _safe_id(tenant)

    def conversation_path(self, tenant: str, channel: str) -> Path:
        return self.data_dir / "conversations" / _safe_id(tenant) / f"{_safe_id(channel)}.jsonl"

    def session_path(self, session_id: str) -> Path:
        return self.data_dir / "sessions" / f"{_safe_id(session_id)}.jsonl"

    def today(self) -> str:
        return self._clock().astimezone(self.tz).date().isoformat()

    def yesterday(self) -> str:
        return (self._clock().astimezone(self.tz) - timedelta(days=1)).date().isoformat()

    # ------------------------------------------------------------------
    # Permanent notes (MEMORY.md)
    # ------------------------------------------------------------------

    def read_notes(self, tenant: str) -> str:
        return _read_text(self.memory_dir(tenant) / NOTES_FILENAME)

    def write_notes(self, tenant: str, content: str) -> None:
        path = self.memory_dir(tenant) / NOTES_FILENAME
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.info("Updated %s for tenant %s", NOTES_FILENAME, tenant)

    # ------------------------------------------------------------------
    # Daily logs (YYYY-MM-DD.md)
    # ------------------------------------------------------------------

    def append_daily_log(self, tenant: str, entry: str, day: str | None = None) -> Path:
        """Append *entry* to the daily log of *day* (default: today)."""
        day = day or self.today()
        path = self.memory_dir(tenant) / f"{day}.md"
        path.parent.mkdir(parents=True, exist_ok=True)
        prefix = "\n" if path.exists() else f"# {day}\n\n"
        with path.open("a", encoding="utf-8") as fh:
            fh.write(prefix + entry + "\n")
        return path

    def read_daily_log(self, tenant: str, day: str) -> str:
        return _read_text(self.memory_dir(tenant) / f"{day}.md")

    def read_recent_daily_logs(self, tenant: str) -> str:
        """Yesterday's and today's logs, most recent day last."""
        parts = [
            text
            for text in (
                self.read_daily_log(tenant, self.yesterday()),
                self.read_daily_log(tenant, self.today()),
            )
            if text
        ]
        return DAILY_LOG_SEPARATOR.join(parts)

    # ------------------------------------------------------------------
    # Conversations (JSONL per channel)
    # ------------------------------------------------------------------

    def channel_lock(self, tenant: str, channel: str) -> threading.RLock:
        """Exclusive-access lock for one channel log."""
        key = (tenant, channel)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def append_message(self, tenant: str, channel: str, message: ConversationMessage) -> None:
        path = self.conversation_path(tenant, channel)
        with self.channel_lock(tenant, channel):
            _append_jsonl(path, message)

    def read_all(self, tenant: str, channel: str) -> list[ConversationMessage]:
        with self.channel_lock(tenant, channel):
            return _read_jsonl(self.conversation_path(tenant, channel))

    def read_recent(self, tenant: str, channel: str, limit: int = 20) -> list[ConversationMessage]:
        if limit <= 0:
            return []
        return self.read_all(tenant, channel)[-limit:]

    def count(self, tenant: str, channel: str) -> int:
        """Number of non-empty lines in the channel log."""
        path = self.conversation_path(tenant, channel)
        with self.channel_lock(tenant, channel):
            if not path.exists():
                return 0
            with path.open(encoding="utf-8") as fh:
                return sum(1 for line in fh if line.strip())

    def replace_all(
        self, tenant: str, channel: str, messages: list[ConversationMessage]
    ) -> None:
        """Atomically rewrite the channel log with *messages*."""
        path = self.conversation_path(tenant, channel)
        with self.channel_lock(tenant, channel):
            _write_jsonl_atomic(path, messages)
        logger.info(
            "Replaced conversation for %s/%s (%d messages)", tenant, channel, len(messages)
        )

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def append_session_message(self, session_id: str, message: ConversationMessage) -> None:
        _append_jsonl(self.session_path(session_id), message)

    def read_session(self, session_id: str) -> list[ConversationMessage]:
        return _read_jsonl(self.session_path(session_id))

    def delete_session(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Deleted session: %s", session_id)
        return True

    # ------------------------------------------------------------------
    # File enumeration (indexer ground truth)
    # ------------------------------------------------------------------

    def list_memory_files(self, tenant: str) -> list[str]:
        directory = self.memory_dir(tenant)
        if not directory.is_dir():
            return []
        return sorted(str(p) for p in directory.glob("*.md") if p.is_file())

    def list_tenants(self) -> list[str]:
        base = self.data_dir / "memory"
        if not base.is_dir():
            return []
        return sorted(p.name for p in base.iterdir() if p.is_dir())

    def list_all_memory_files(self) -> list[str]:
        files: list[str] = []
        for tenant in self.list_tenants():
            files.extend(self.list_memory_files(tenant))
        return files


# ------------------------------------------------------------------
# File helpers
# ------------------------------------------------------------------


def _safe_id(value: str) -> str:
    """Reject ids that could escape their directory."""
    if not _SAFE_ID_RE.match(value) or value in (".", ".."):
        raise ValueError(f"Invalid identifier: {value!r}")
    return value


def _read_text(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8")


def _append_jsonl(path: Path, message: ConversationMessage) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")


def _read_jsonl(path: Path) -> list[ConversationMessage]:
    if not path.exists():
        return []
    messages: list[ConversationMessage] = []
    with path.open(encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                messages.append(ConversationMessage.from_dict(json.loads(line)))
            except ValueError as exc:
                logger.warning("Skipping corrupt line %d in %s: %s", lineno, path, exc)
    return messages


def _write_jsonl_atomic(path: Path, messages: list[ConversationMessage]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            for message in messages:
                fh.write(json.dumps(message.to_dict(), ensure_ascii=False) + "\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
