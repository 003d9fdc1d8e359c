"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest

from deskmate.store.chat_store import ChatStore
from deskmate.store.models import Conversation, Message, PrivacySettings, utcnow
from deskmate.store.registry import StoreRegistry


class FakePolicy:
    """Policy provider with settable privacy settings."""

    def __init__(self, **overrides) -> None:
        self.settings = PrivacySettings(**overrides)
        self.cleanup_due = False

    def update(self, **overrides) -> None:
        self.settings = self.settings.model_copy(update=overrides)

    def get_privacy_settings(self) -> PrivacySettings:
        return self.settings

    def should_run_auto_cleanup(self) -> bool:
        return self.cleanup_due


def _build_conversation(
    conv_id: str,
    days_old: float = 0,
    messages: int = 1,
    content: str = "hello",
    title: str | None = None,
) -> Conversation:
    updated = utcnow() - timedelta(days=days_old)
    msgs = [
        Message(
            id=f"{conv_id}-m{i}",
            role="user" if i % 2 == 0 else "assistant",
            content=content,
            timestamp=updated,
        )
        for i in range(messages)
    ]
    return Conversation(
        id=conv_id,
        title=title or f"Conversation {conv_id}",
        messages=msgs,
        created_at=updated,
        updated_at=updated,
    )


@pytest.fixture(autouse=True)
def _reset_registry():
    StoreRegistry._reset()
    yield
    StoreRegistry._reset()


@pytest.fixture
def make_policy() -> Callable[..., FakePolicy]:
    """Factory for policy providers; keyword arguments override PrivacySettings."""
    return FakePolicy


@pytest.fixture
def make_conversation() -> Callable[..., Conversation]:
    """Factory for a conversation last updated ``days_old`` days ago."""
    return _build_conversation


@pytest.fixture
def policy(make_policy):
    return make_policy()


@pytest.fixture
async def chat(tmp_path: Path, policy) -> ChatStore:
    """An initialized ChatStore rooted in a temporary directory."""
    store = ChatStore(policy, data_dir=tmp_path)
    await store.initialize()
    return store
