"""Message persistence: the downstream store for completed turns.

MessageStore is the interface ChatSession writes to. JsonMessageStore
keeps one JSON document per chat:

    {base_dir}/{chat_id}.json
        {"chat": {...}, "messages": [...], "saved_at": ..., "version": "1.0"}

Each write lands in a temp file that is renamed over the document, so
a crash never leaves a truncated chat behind.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agentstream.engine.errors import PersistenceError
from agentstream.shared.models.message import Chat, Message, MessageRole, NewMessage

logger = logging.getLogger(__name__)

_FORMAT_VERSION = "1.0"


def _sync_directory(directory: Path) -> None:
    """Flush a rename to disk. Skipped where directories cannot be opened."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(directory, flags)
    except OSError:
        logger.debug("Cannot open %s for fsync", directory)
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("Directory fsync unsupported for %s", directory)
    finally:
        os.close(fd)


class MessageStore(abc.ABC):
    """Abstract chat/message store."""

    @abc.abstractmethod
    async def get_chat(self, chat_id: str) -> Chat | None:
        """Return the chat record, or None if it does not exist."""

    @abc.abstractmethod
    async def list_messages(self, chat_id: str) -> list[Message]:
        """Return the chat's messages in creation order."""

    async def count_messages(self, chat_id: str, role: MessageRole | None = None) -> int:
        messages = await self.list_messages(chat_id)
        if role is None:
            return len(messages)
        return sum(1 for m in messages if m.role == role)

    @abc.abstractmethod
    async def create_message(self, message: NewMessage) -> Message:
        """Append a message to a chat."""

    @abc.abstractmethod
    async def update_chat_session_id(self, chat_id: str, session_id: str) -> Chat:
        """Store the resumable session id on the chat."""


def _chat_to_dict(chat: Chat) -> dict[str, Any]:
    return {
        "id": chat.id,
        "title": chat.title,
        "session_id": chat.session_id,
        "created_at": chat.created_at.isoformat(),
    }


def _message_to_dict(message: Message) -> dict[str, Any]:
    d: dict[str, Any] = {
        "id": message.id,
        "chat_id": message.chat_id,
        "role": message.role.value,
        "content": message.content,
        "created_at": message.created_at.isoformat(),
    }
    if message.tool_calls is not None:
        d["tool_calls"] = message.tool_calls
    if message.tool_results is not None:
        d["tool_results"] = message.tool_results
    return d


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            return datetime.now(timezone.utc)
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _dict_to_chat(data: dict[str, Any], chat_id: str) -> Chat:
    return Chat(
        id=str(data.get("id") or chat_id),
        title=str(data.get("title") or ""),
        session_id=data.get("session_id") or None,
        created_at=_parse_datetime(data.get("created_at")),
    )


def _dict_to_message(data: dict[str, Any], chat_id: str) -> Message:
    return Message(
        id=str(data.get("id")),
        chat_id=str(data.get("chat_id") or chat_id),
        role=MessageRole(data.get("role", "assistant")),
        content=str(data.get("content") or ""),
        tool_calls=data.get("tool_calls"),
        tool_results=data.get("tool_results"),
        created_at=_parse_datetime(data.get("created_at")),
    )


class JsonMessageStore(MessageStore):
    """One JSON file per chat under ``base_dir``."""

    def __init__(self, base_dir: Path | str) -> None:
        self._dir = Path(base_dir).expanduser()
        self._dir.mkdir(parents=True, exist_ok=True)
        # Serializes read-modify-write cycles within this event loop
        self._lock = asyncio.Lock()

    @property
    def base_dir(self) -> Path:
        return self._dir

    def _path(self, chat_id: str) -> Path:
        if not chat_id or "/" in chat_id or "\\" in chat_id or chat_id.startswith("."):
            raise PersistenceError(chat_id, "invalid chat id")
        return self._dir / f"{chat_id}.json"

    def _read(self, chat_id: str) -> dict[str, Any] | None:
        path = self._path(chat_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            raise PersistenceError(chat_id, f"cannot read {path.name}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(chat_id, f"{path.name} is not a JSON object")
        return data

    def _write(self, chat_id: str, data: dict[str, Any]) -> None:
        """Replace the chat document: temp file, fsync, rename over the original."""
        data["saved_at"] = datetime.now(timezone.utc).isoformat()
        data["version"] = _FORMAT_VERSION
        path = self._path(chat_id)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(chat_id, f"cannot write {path.name}: {e}") from e
        finally:
            if tmp.exists():
                try:
                    tmp.unlink()
                except OSError:
                    logger.warning("Could not remove temp file %s", tmp)
        _sync_directory(self._dir)
        logger.debug("Chat %s saved to %s", chat_id, path)

    def create_chat(self, chat_id: str, title: str = "") -> Chat:
        """Create an empty chat document (no-op if it already exists)."""
        existing = self._read(chat_id)
        if existing is not None:
            return _dict_to_chat(existing.get("chat") or {}, chat_id)
        chat = Chat(id=chat_id, title=title)
        self._write(chat_id, {"chat": _chat_to_dict(chat), "messages": []})
        logger.info("Created chat %s", chat_id)
        return chat

    async def get_chat(self, chat_id: str) -> Chat | None:
        data = self._read(chat_id)
        if data is None:
            return None
        return _dict_to_chat(data.get("chat") or {}, chat_id)

    async def list_messages(self, chat_id: str) -> list[Message]:
        data = self._read(chat_id)
        if data is None:
            return []
        messages: list[Message] = []
        for raw in data.get("messages") or []:
            if not isinstance(raw, dict):
                continue
            try:
                messages.append(_dict_to_message(raw, chat_id))
            except ValueError:
                logger.warning("Skipping malformed message in chat %s", chat_id)
        return messages

    async def create_message(self, message: NewMessage) -> Message:
        async with self._lock:
            data = self._read(message.chat_id)
            if data is None:
                raise PersistenceError(message.chat_id, "chat does not exist")
            stored = Message.from_new(message)
            data.setdefault("messages", []).append(_message_to_dict(stored))
            self._write(message.chat_id, data)
        logger.info(
            "Stored %s message %s in chat %s",
            stored.role.value, stored.id, stored.chat_id,
        )
        return stored

    async def update_chat_session_id(self, chat_id: str, session_id: str) -> Chat:
        async with self._lock:
            data = self._read(chat_id)
            if data is None:
                raise PersistenceError(chat_id, "chat does not exist")
            chat = _dict_to_chat(data.get("chat") or {}, chat_id)
            chat.session_id = session_id
            data["chat"] = _chat_to_dict(chat)
            self._write(chat_id, data)
        logger.info("Chat %s session id set to %s", chat_id, session_id)
        return chat
