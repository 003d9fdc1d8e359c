"""Data models for conversations, retention policy and store reports."""

from __future__ import annotations

import re
import uuid
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, TypeAdapter

Role = Literal["user", "assistant"]
CleanupSchedule = Literal["daily", "weekly", "monthly"]
ThemeName = Literal["light", "dark", "system"]

DEFAULT_MODEL = "gemini-2.5-flash"


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


def as_utc(value: datetime) -> datetime:
    """Read a timestamp without a UTC offset as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def from_epoch_ms(value: Any) -> Any:
    """Convert an epoch-milliseconds number to a UTC datetime; pass anything else through."""
    if isinstance(value, int | float) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    return value


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


# Every stored timestamp is UTC-aware, whatever the document held.
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class Message(BaseModel):
    """A single chat message. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)
    model: str = DEFAULT_MODEL


class Conversation(BaseModel):
    """An ordered, titled collection of messages.

    ``messages`` is in insertion (chronological) order.  Instances are frozen;
    the chat store builds a new one for every change.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: str = "New conversation"
    messages: list[Message] = Field(default_factory=list)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)
    model: str = DEFAULT_MODEL


class ConversationView(Conversation):
    """A conversation plus the derived fields the history list displays."""

    message_count: int = 0
    last_message: str = ""

    @classmethod
    def of(cls, conv: Conversation) -> ConversationView:
        return cls(
            **conv.model_dump(),
            message_count=len(conv.messages),
            last_message=conv.messages[-1].content if conv.messages else "",
        )


conversation_list = TypeAdapter(list[Conversation])


def serialized_size(conversations: list[Conversation]) -> int:
    """Byte length of *conversations* as compact JSON."""
    return len(conversation_list.dump_json(conversations))


def conversation_size(conv: Conversation) -> int:
    return len(conv.model_dump_json())


class PrivacySettings(BaseModel):
    """Read-only projection of the retention policy."""

    model_config = ConfigDict(frozen=True)

    incognito_mode: bool = False
    data_retention_days: int = 30
    auto_cleanup_enabled: bool = False
    cleanup_schedule: CleanupSchedule = "weekly"
    max_storage_size_mb: int = 100
    keep_recent_days: int = 7


class CleanupResult(BaseModel):
    deleted_conversations: int = 0
    freed_space_mb: float = 0.0
    kept_recent: int = 0


class ChatStats(BaseModel):
    total_conversations: int
    total_messages: int
    average_messages_per_conversation: int
    oldest_conversation: datetime | None = None
    newest_conversation: datetime | None = None


class StorageInfo(BaseModel):
    total_conversations: int
    total_messages: int
    estimated_size_mb: float
    oldest_date: datetime | None = None
    newest_date: datetime | None = None


class ExportBundle(BaseModel):
    """Everything ``export_all_data()`` writes out, and ``import_data()`` reads."""

    export_date: datetime = Field(default_factory=utcnow)
    total_conversations: int = 0
    total_messages: int = 0
    conversations: list[Conversation] = Field(default_factory=list)
