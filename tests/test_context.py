"""Tests for AppContext: wiring, startup cleanup and shutdown."""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path

import pytest

from deskmate.context import AppContext
from deskmate.store.chat_store import INCOGNITO_MESSAGE_ID
from deskmate.store.models import utcnow
from deskmate.store.registry import StoreRegistry


@pytest.fixture
async def ctx(tmp_path: Path) -> AppContext:
    context = AppContext.create(data_dir=tmp_path, registry=StoreRegistry())
    await context.start()
    return context


def test_create_registers_stores(tmp_path: Path) -> None:
    registry = StoreRegistry()
    context = AppContext.create(data_dir=tmp_path, registry=registry)

    assert registry.get_store("config") is context.config
    assert registry.get_store("chat") is context.chat
    assert registry.get_store("ui") is context.ui


def test_create_defaults_to_singleton_registry(tmp_path: Path) -> None:
    context = AppContext.create(data_dir=tmp_path)
    assert context.registry is StoreRegistry.get()


async def test_start_initializes_everything(ctx: AppContext, tmp_path: Path) -> None:
    assert ctx.config.is_initialized()
    assert ctx.chat.is_initialized()
    assert ctx.ui.is_initialized()
    assert (tmp_path / "config.json").exists()


async def test_start_applies_selected_model(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text(
        json.dumps({"schema_version": 2, "selected_model": "gemini-2.5-pro"}), encoding="utf-8"
    )
    context = AppContext.create(data_dir=tmp_path, registry=StoreRegistry())
    await context.start()

    assert context.chat.get("current_model") == "gemini-2.5-pro"


async def test_chat_follows_config_incognito(ctx: AppContext) -> None:
    await ctx.config.set_incognito_mode(True)
    assert await ctx.chat.add_message("secret", "user") == INCOGNITO_MESSAGE_ID

    await ctx.config.set_incognito_mode(False)
    assert await ctx.chat.add_message("hello", "user") != INCOGNITO_MESSAGE_ID


async def test_auto_cleanup_not_due(ctx: AppContext) -> None:
    await ctx.config.set_auto_cleanup(True, "weekly")
    assert await ctx.run_auto_cleanup_if_due() is None


async def test_auto_cleanup_runs_when_due(ctx: AppContext, make_conversation) -> None:
    await ctx.config.set_auto_cleanup(True, "daily")
    await ctx.config.record_cleanup(utcnow() - timedelta(days=2))
    await ctx.chat.import_data([
        make_conversation("old", days_old=60).model_dump(mode="json"),
        make_conversation("new", days_old=1).model_dump(mode="json"),
    ])

    result = await ctx.run_auto_cleanup_if_due()

    assert result is not None
    assert result.deleted_conversations == 1
    assert [c.id for c in ctx.chat.get("conversations")] == ["new"]
    assert ctx.config.should_run_auto_cleanup() is False


async def test_subscribe_all(ctx: AppContext) -> None:
    seen: list[str] = []
    unsubscribe = ctx.subscribe_all(lambda name, state: seen.append(name))

    ctx.ui.set_minimized(True)
    ctx.chat.set_processing(True)
    await ctx.config.set_auto_hide(False)
    unsubscribe()
    ctx.ui.set_minimized(False)

    assert seen[:2] == ["ui", "chat"]
    assert set(seen) == {"ui", "chat", "config"}
    assert seen.count("ui") == 1


async def test_app_state(ctx: AppContext) -> None:
    state = ctx.app_state()
    assert set(state) == {"config", "chat", "ui"}
    assert state["chat"].conversations == []


async def test_shutdown_saves_and_destroys(ctx: AppContext, tmp_path: Path) -> None:
    calls = []
    ctx.chat.subscribe(calls.append)

    await ctx.shutdown()
    ctx.chat.set_processing(True)

    assert (tmp_path / "chat-data" / "conversations.json").exists()
    assert (tmp_path / "ui-preferences" / "ui-preferences.json").exists()
    assert ctx.registry.all_stores() == {}
    assert calls == []
