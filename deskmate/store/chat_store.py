"""ChatStore: conversation history, retention cleanup, search and export.

The conversation list is kept most-recently-touched first: every mutation
that touches a conversation rebuilds the list with that conversation at the
head.  The filtered projection, the total message count and the current
conversation pointer are recomputed on every list change by ``_commit()``.

The retention policy is read from an injected ``PolicyProvider`` (normally
the ``ConfigStore``).
"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from deskmate.config import settings
from deskmate.store.base import BaseStore
from deskmate.store.files import read_json, write_json
from deskmate.store.models import (
    ChatStats,
    CleanupResult,
    Conversation,
    ConversationView,
    ExportBundle,
    Message,
    PrivacySettings,
    Role,
    StorageInfo,
    conversation_list,
    conversation_size,
    from_epoch_ms,
    serialized_size,
    snake_case,
    utcnow,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

INCOGNITO_MESSAGE_ID = "incognito-message"
DEFAULT_TITLE = "New conversation"
MAX_TITLE_LENGTH = 50
MAX_PERSISTED_MESSAGES = 50
MAX_CONVERSATIONS = 100

_BYTES_PER_MB = 1024 * 1024

ExportFormat = Literal["json", "txt", "md"]


@runtime_checkable
class PolicyProvider(Protocol):
    """Source of the retention policy the chat store enforces."""

    def get_privacy_settings(self) -> PrivacySettings: ...

    def should_run_auto_cleanup(self) -> bool: ...


class ChatState(BaseModel):
    current_conversation_id: str | None = None
    conversations: list[Conversation] = Field(default_factory=list)
    is_processing: bool = False
    last_message_id: str = ""
    total_messages: int = 0
    search_query: str = ""
    filtered_conversations: list[Conversation] = Field(default_factory=list)
    current_model: str = Field(default_factory=lambda: settings.default_model)
    max_conversations: int = MAX_CONVERSATIONS


def derive_title(text: str) -> str:
    """Single-line title from a message, truncated with an ellipsis."""
    clean = text.strip().replace("\r\n", " ").replace("\n", " ")
    if not clean:
        return DEFAULT_TITLE
    if len(clean) <= MAX_TITLE_LENGTH:
        return clean
    return clean[:MAX_TITLE_LENGTH] + "..."


def filter_conversations(conversations: list[Conversation], query: str) -> list[Conversation]:
    """Case-insensitive substring match on title or any message body."""
    if not query.strip():
        return list(conversations)
    needle = query.lower()
    return [
        conv
        for conv in conversations
        if needle in conv.title.lower() or any(needle in m.content.lower() for m in conv.messages)
    ]


def _count_messages(conversations: list[Conversation]) -> int:
    return sum(len(conv.messages) for conv in conversations)


def _to_mb(num_bytes: int) -> float:
    return round(num_bytes / _BYTES_PER_MB, 2)


def migrate_conversation(raw: Any) -> Any:
    """Upgrade a first-generation conversation document.

    Those used camelCase keys and epoch-millisecond timestamps.  Anything
    without ``createdAt``/``updatedAt`` is returned unchanged.
    """
    if not isinstance(raw, dict) or not {"createdAt", "updatedAt"} & raw.keys():
        return raw
    migrated = {snake_case(key): value for key, value in raw.items()}
    for key in ("created_at", "updated_at"):
        if key in migrated:
            migrated[key] = from_epoch_ms(migrated[key])
    if isinstance(migrated.get("messages"), list):
        migrated["messages"] = [
            {**m, "timestamp": from_epoch_ms(m["timestamp"])} if isinstance(m, dict) and "timestamp" in m else m
            for m in migrated["messages"]
        ]
    return migrated


def _parse_conversations(items: list[Any], source: str) -> list[Conversation]:
    """Validate raw conversation dicts, skipping bad entries and duplicate IDs."""
    seen: set[str] = set()
    result: list[Conversation] = []
    for index, item in enumerate(items):
        try:
            conv = Conversation.model_validate(migrate_conversation(item))
        except ValidationError:
            logger.warning("%s: skipping invalid conversation at index %d", source, index)
            continue
        if conv.id in seen:
            logger.warning("%s: skipping duplicate conversation %s", source, conv.id)
            continue
        seen.add(conv.id)
        result.append(conv)
    return result


class ChatStore(BaseStore[ChatState]):
    """Owns every conversation and enforces incognito and retention rules."""

    def __init__(self, policy: PolicyProvider, data_dir: Path | None = None) -> None:
        super().__init__()
        self._policy = policy
        self._path = (data_dir or settings.data_dir) / "chat-data" / "conversations.json"

    @property
    def path(self) -> Path:
        return self._path

    def default_state(self) -> ChatState:
        return ChatState()

    # -- Persistence -----------------------------------------------------------

    async def load(self) -> None:
        try:
            raw = await read_json(self._path)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError):
            logger.warning("Could not read conversations at %s", self._path, exc_info=True)
            return

        if raw is None:
            logger.info("No saved conversations at %s", self._path)
            return
        if not isinstance(raw, list):
            logger.warning("Conversations file %s is not a list, ignoring it", self._path)
            return

        conversations = _parse_conversations(raw, str(self._path))
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        self._commit(conversations)
        logger.info("Loaded %d conversations", len(conversations))

    async def save(self) -> None:
        """Write the conversation list, keeping only each one's newest messages.

        The cap applies to the file only; in-memory conversations keep every
        message until the process exits.
        """
        trimmed = [
            conv.model_copy(update={"messages": conv.messages[-MAX_PERSISTED_MESSAGES:]})
            for conv in self._state.conversations
        ]
        await write_json(self._path, conversation_list.dump_python(trimmed, mode="json"))
        logger.debug("Saved %d conversations", len(trimmed))

    def _commit(self, conversations: list[Conversation], **extra: Any) -> None:
        """Install a new conversation list and everything derived from it."""
        current_id = extra.pop("current_conversation_id", self._state.current_conversation_id)
        if current_id is not None and not any(c.id == current_id for c in conversations):
            current_id = None
        self._set_state(
            conversations=conversations,
            filtered_conversations=filter_conversations(conversations, self._state.search_query),
            total_messages=_count_messages(conversations),
            current_conversation_id=current_id,
            **extra,
        )

    def _find(self, conversation_id: str | None) -> Conversation | None:
        if conversation_id is None:
            return None
        return next((c for c in self._state.conversations if c.id == conversation_id), None)

    def _incognito(self) -> bool:
        return self._policy.get_privacy_settings().incognito_mode

    # -- Current conversation --------------------------------------------------

    @property
    def current_conversation(self) -> Conversation | None:
        conv = self._find(self._state.current_conversation_id)
        return conv.model_copy(deep=True) if conv else None

    def set_current_conversation(self, conversation_id: str) -> bool:
        if self._find(conversation_id) is None:
            return False
        self._set_state(current_conversation_id=conversation_id)
        return True

    def load_conversation(self, conversation_id: str) -> Conversation | None:
        """Make *conversation_id* current and return it, or None if unknown."""
        if not self.set_current_conversation(conversation_id):
            return None
        return self.current_conversation

    def clear_current_conversation(self) -> None:
        self._set_state(current_conversation_id=None)

    def set_current_model(self, model: str) -> None:
        self._set_state(current_model=model)

    def set_processing(self, is_processing: bool) -> None:
        self._set_state(is_processing=is_processing)

    # -- Mutations -------------------------------------------------------------

    async def create_conversation(self, first_message: str | None = None) -> str:
        """Start a new conversation at the head of the list and make it current."""
        now = utcnow()
        conv = Conversation(
            title=derive_title(first_message) if first_message else DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
            model=self._state.current_model,
        )
        conversations = [conv, *self._state.conversations][: self._state.max_conversations]
        self._commit(conversations, current_conversation_id=conv.id)
        await self.save()
        logger.info("Created conversation %s", conv.id)
        return conv.id

    async def add_message(self, content: str, role: Role, model: str | None = None) -> str:
        """Append a message to the current conversation and persist.

        Returns the new message ID, or ``INCOGNITO_MESSAGE_ID`` when incognito
        mode is on, in which case nothing is created or changed.
        """
        if self._incognito():
            logger.info("Incognito mode active, message not recorded")
            return INCOGNITO_MESSAGE_ID

        current = self._find(self._state.current_conversation_id)
        if current is None:
            new_id = await self.create_conversation(content if role == "user" else None)
            current = self._find(new_id)
            if current is None:
                msg = f"Conversation {new_id} vanished before its first message"
                raise RuntimeError(msg)

        message = Message(role=role, content=content, model=model or self._state.current_model)
        title = derive_title(content) if not current.messages and role == "user" else current.title
        updated = current.model_copy(
            update={
                "messages": [*current.messages, message],
                "updated_at": message.timestamp,
                "title": title,
            }
        )
        conversations = [updated, *(c for c in self._state.conversations if c.id != updated.id)]
        self._commit(conversations, current_conversation_id=updated.id, last_message_id=message.id)
        await self.save()
        return message.id

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        conv = self._find(conversation_id)
        if conv is None:
            return False
        updated = conv.model_copy(update={"title": title.strip() or DEFAULT_TITLE, "updated_at": utcnow()})
        conversations = [updated, *(c for c in self._state.conversations if c.id != conversation_id)]
        self._commit(conversations)
        await self.save()
        return True

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Remove a conversation.  Returns False if it does not exist."""
        if self._find(conversation_id) is None:
            return False
        self._commit([c for c in self._state.conversations if c.id != conversation_id])
        await self.save()
        logger.info("Deleted conversation %s", conversation_id)
        return True

    async def clear_all_data(self) -> None:
        self._commit([], current_conversation_id=None, search_query="", last_message_id="")
        await self.save()
        logger.info("All chat data cleared")

    # -- Queries ---------------------------------------------------------------

    def get_all_conversations(self) -> list[ConversationView]:
        return [ConversationView.of(conv) for conv in self._state.conversations]

    def search_conversations(self, query: str) -> list[ConversationView]:
        """Filter by *query* and remember it for later list changes.

        Only the filtered projection changes; the stored list is untouched.
        """
        filtered = filter_conversations(self._state.conversations, query)
        self._set_state(search_query=query, filtered_conversations=filtered)
        return [ConversationView.of(conv) for conv in filtered]

    def get_api_history(self) -> list[dict[str, Any]]:
        """Current conversation in the Gemini ``contents`` shape."""
        conv = self._find(self._state.current_conversation_id)
        if conv is None:
            return []
        return [
            {"role": "model" if m.role == "assistant" else m.role, "parts": [{"text": m.content}]}
            for m in conv.messages
        ]

    def get_stats(self) -> ChatStats:
        conversations = self._state.conversations
        total = self._state.total_messages
        return ChatStats(
            total_conversations=len(conversations),
            total_messages=total,
            average_messages_per_conversation=math.floor(total / len(conversations) + 0.5) if conversations else 0,
            oldest_conversation=min((c.created_at for c in conversations), default=None),
            newest_conversation=max((c.updated_at for c in conversations), default=None),
        )

    def get_storage_info(self) -> StorageInfo:
        conversations = self._state.conversations
        return StorageInfo(
            total_conversations=len(conversations),
            total_messages=self._state.total_messages,
            estimated_size_mb=_to_mb(serialized_size(conversations)),
            oldest_date=min((c.created_at for c in conversations), default=None),
            newest_date=max((c.updated_at for c in conversations), default=None),
        )

    def needs_cleanup(self) -> bool:
        return self._policy.should_run_auto_cleanup()

    # -- Export / import -------------------------------------------------------

    def export_conversation(self, conversation_id: str, fmt: ExportFormat = "json") -> str | None:
        conv = self._find(conversation_id)
        if conv is None:
            return None
        if fmt == "json":
            return conv.model_dump_json(indent=2)
        if fmt == "txt":
            return _to_text(conv)
        if fmt == "md":
            return _to_markdown(conv)
        logger.warning("Unsupported export format: %s", fmt)
        return None

    def export_all_data(self) -> str:
        bundle = ExportBundle(
            total_conversations=len(self._state.conversations),
            total_messages=self._state.total_messages,
            conversations=self._state.conversations,
        )
        return bundle.model_dump_json(indent=2)

    async def import_data(self, payload: str | dict[str, Any] | list[Any]) -> int:
        """Merge conversations from an export bundle or a bare list.

        Conversations whose ID already exists are skipped.  Returns how many
        were added.
        """
        if self._incognito():
            logger.info("Incognito mode active, import skipped")
            return 0

        raw = json.loads(payload) if isinstance(payload, str) else payload
        items = raw.get("conversations", []) if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            msg = "Import payload must be a list of conversations or an export bundle"
            raise ValueError(msg)

        existing = {c.id for c in self._state.conversations}
        added = [c for c in _parse_conversations(items, "import") if c.id not in existing]
        if not added:
            return 0

        merged = sorted([*self._state.conversations, *added], key=lambda c: c.updated_at, reverse=True)
        self._commit(merged)
        await self.save()
        logger.info("Imported %d conversations", len(added))
        return len(added)

    # -- Retention -------------------------------------------------------------

    async def cleanup_old_conversations(self, days_to_keep: int, now: datetime | None = None) -> int:
        """Drop conversations not updated within *days_to_keep*.  Returns the count."""
        cutoff = (now or utcnow()) - timedelta(days=days_to_keep)
        kept = [c for c in self._state.conversations if c.updated_at > cutoff]
        deleted = len(self._state.conversations) - len(kept)
        if deleted:
            self._commit(kept)
            await self.save()
            logger.info("Removed %d conversations older than %d days", deleted, days_to_keep)
        return deleted

    async def smart_cleanup(self, now: datetime | None = None) -> CleanupResult:
        """Evict conversations by age, then by total size, per the policy.

        A conversation survives the age pass if it was updated within either
        ``keep_recent_days`` or ``data_retention_days``.  If the survivors
        still serialize to more than ``max_storage_size_mb``, the least
        recently updated are evicted one at a time until they fit.
        """
        policy = self._policy.get_privacy_settings()
        if not policy.auto_cleanup_enabled:
            return CleanupResult()

        now = now or utcnow()
        keep_recent = timedelta(days=policy.keep_recent_days)
        retention = timedelta(days=policy.data_retention_days)

        kept: list[Conversation] = []
        deleted = 0
        freed_bytes = 0
        for conv in self._state.conversations:
            age = now - conv.updated_at
            if age < keep_recent or age < retention:
                kept.append(conv)
            else:
                deleted += 1
                freed_bytes += conversation_size(conv)

        max_bytes = policy.max_storage_size_mb * _BYTES_PER_MB
        total_bytes = serialized_size(kept)
        if total_bytes > max_bytes:
            kept.sort(key=lambda c: c.updated_at, reverse=True)
            while kept and total_bytes > max_bytes:
                removed = kept.pop()
                size = conversation_size(removed)
                # One fewer separating comma unless the list is now empty.
                total_bytes -= size + (1 if kept else 0)
                deleted += 1
                freed_bytes += size

        self._commit(kept)
        await self.save()

        result = CleanupResult(
            deleted_conversations=deleted,
            freed_space_mb=_to_mb(freed_bytes),
            kept_recent=sum(1 for c in kept if now - c.updated_at < keep_recent),
        )
        logger.info(
            "Smart cleanup removed %d conversations (%.2f MB), %d recent kept",
            result.deleted_conversations,
            result.freed_space_mb,
            result.kept_recent,
        )
        return result


def _format_timestamp(ts: datetime) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _sender(message: Message) -> str:
    return "User" if message.role == "user" else settings.assistant_name


def _to_text(conv: Conversation) -> str:
    header = (
        f"Conversation: {conv.title}\n"
        f"Date: {_format_timestamp(conv.created_at)}\n"
        f"{'=' * 50}\n\n"
    )
    body = "\n".join(
        f"[{_format_timestamp(m.timestamp)}] {_sender(m)}:\n{m.content}\n" for m in conv.messages
    )
    return header + body


def _to_markdown(conv: Conversation) -> str:
    header = f"# {conv.title}\n\n**Date:** {_format_timestamp(conv.created_at)}\n\n---\n\n"
    body = "\n".join(
        f"## {_sender(m)}\n*{_format_timestamp(m.timestamp)}*\n\n{m.content}\n\n---\n"
        for m in conv.messages
    )
    return header + body
