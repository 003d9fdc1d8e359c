"""Tests for ChatBridge: UI-facing operations and the prompt round trip."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from deskmate.bridge import MISSING_KEY_MESSAGE, BridgeResult, ChatBridge
from deskmate.context import AppContext
from deskmate.llm.client import ApiError, TextGenerator
from deskmate.store.registry import StoreRegistry


class FakeGenerator:
    """Records every call and replies with a canned answer."""

    def __init__(self, reply: str = "Paris.", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple] = []

    async def generate(self, prompt, image, history):
        self.calls.append((prompt, image, list(history)))
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
async def ctx(tmp_path: Path) -> AppContext:
    context = AppContext.create(data_dir=tmp_path, registry=StoreRegistry())
    await context.start()
    return context


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
async def bridge(ctx: AppContext, generator: FakeGenerator) -> ChatBridge:
    await ctx.config.set_api_key("test-key")
    return ChatBridge(ctx, generator)


def test_bridge_result_success() -> None:
    assert BridgeResult(data=1).success is True
    assert BridgeResult(error="nope").success is False


def test_fake_generator_satisfies_protocol() -> None:
    assert isinstance(FakeGenerator(), TextGenerator)


# -- send_prompt ---------------------------------------------------------------


async def test_send_prompt_records_exchange(bridge: ChatBridge, ctx: AppContext, generator: FakeGenerator) -> None:
    result = await bridge.send_prompt("Capital of France?")

    assert result == BridgeResult(data="Paris.")
    messages = ctx.chat.current_conversation.messages
    assert [(m.role, m.content) for m in messages] == [("user", "Capital of France?"), ("assistant", "Paris.")]
    assert generator.calls == [("Capital of France?", None, [])]
    assert ctx.chat.get("is_processing") is False
    assert ctx.ui.get("is_processing") is False


async def test_send_prompt_passes_prior_history(bridge: ChatBridge, generator: FakeGenerator) -> None:
    await bridge.send_prompt("first")
    await bridge.send_prompt("second", image="aW1n")

    prompt, image, history = generator.calls[1]
    assert prompt == "second"
    assert image == "aW1n"
    assert history == [
        {"role": "user", "parts": [{"text": "first"}]},
        {"role": "model", "parts": [{"text": "Paris."}]},
    ]


async def test_send_prompt_api_error_recorded(ctx: AppContext) -> None:
    await ctx.config.set_api_key("test-key")
    bridge = ChatBridge(ctx, FakeGenerator(error=ApiError("quota exceeded")))

    result = await bridge.send_prompt("hello")

    assert not result.success
    assert result.error.startswith("Error:")
    assert "quota exceeded" in result.error
    messages = ctx.chat.current_conversation.messages
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[1].content == result.error
    assert ctx.chat.get("is_processing") is False


async def test_send_prompt_without_key(ctx: AppContext, generator: FakeGenerator) -> None:
    bridge = ChatBridge(ctx, generator)

    assert await bridge.send_prompt("hello") == BridgeResult(error=MISSING_KEY_MESSAGE)
    assert generator.calls == []
    assert ctx.chat.get("conversations") == []


async def test_send_prompt_without_generator(ctx: AppContext) -> None:
    await ctx.config.set_api_key("test-key")
    assert (await ChatBridge(ctx).send_prompt("hello")).error == MISSING_KEY_MESSAGE


async def test_send_prompt_in_incognito(bridge: ChatBridge, ctx: AppContext) -> None:
    await ctx.config.set_incognito_mode(True)

    result = await bridge.send_prompt("secret")

    assert result == BridgeResult(data="Paris.")
    assert ctx.chat.get("conversations") == []


async def test_send_prompt_stops_when_user_message_not_saved(
    bridge: ChatBridge, ctx: AppContext, generator: FakeGenerator, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(ctx.chat, "save", AsyncMock(side_effect=OSError("disk full")))

    result = await bridge.send_prompt("hi")

    assert not result.success
    assert "disk full" in result.error
    assert result.data is None
    assert generator.calls == []
    assert ctx.chat.get("is_processing") is False


async def test_send_prompt_reports_unsaved_reply(
    bridge: ChatBridge, ctx: AppContext, generator: FakeGenerator, monkeypatch: pytest.MonkeyPatch
) -> None:
    save = AsyncMock(side_effect=[None, None, OSError("disk full")])
    monkeypatch.setattr(ctx.chat, "save", save)

    result = await bridge.send_prompt("hi")

    assert result.data == "Paris."
    assert not result.success
    assert "disk full" in result.error
    assert len(generator.calls) == 1


async def test_send_prompt_with_mock_generator(ctx: AppContext) -> None:
    await ctx.config.set_api_key("test-key")
    generate = AsyncMock(return_value="Hi!")
    mock_generator = AsyncMock()
    mock_generator.generate = generate

    result = await ChatBridge(ctx, mock_generator).send_prompt("Hello")

    assert result.data == "Hi!"
    generate.assert_awaited_once_with("Hello", None, [])


# -- settings ------------------------------------------------------------------


async def test_api_key_round_trip(ctx: AppContext) -> None:
    bridge = ChatBridge(ctx)
    result = await bridge.set_api_key(" abc ")

    assert result.success
    assert bridge.get_api_key() == "abc"
    assert bridge.get_config()["api_key"] == "abc"


async def test_set_theme_updates_both_stores(ctx: AppContext) -> None:
    bridge = ChatBridge(ctx)
    assert (await bridge.set_theme("dark")).success

    assert ctx.ui.get("theme") == "dark"
    assert ctx.config.get("theme") == "dark"
    assert bridge.get_ui_state()["current_theme"] == "dark"


async def test_privacy_settings(ctx: AppContext) -> None:
    bridge = ChatBridge(ctx)
    await bridge.set_data_retention(14)
    await bridge.set_auto_cleanup(True, "daily")
    await bridge.set_incognito_mode(True)

    privacy = bridge.get_privacy_settings()
    assert privacy["data_retention_days"] == 14
    assert privacy["auto_cleanup_enabled"] is True
    assert privacy["cleanup_schedule"] == "daily"
    assert privacy["incognito_mode"] is True


async def test_invalid_schedule_reported_as_error(ctx: AppContext) -> None:
    result = await ChatBridge(ctx).set_auto_cleanup(True, "hourly")  # type: ignore[arg-type]
    assert not result.success
    assert "hourly" in result.error


async def test_save_failure_reported_as_error(ctx: AppContext, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ctx.config, "save", AsyncMock(side_effect=OSError("disk full")))

    result = await ChatBridge(ctx).set_incognito_mode(True)

    assert not result.success
    assert "disk full" in result.error
    assert ctx.config.get("incognito_mode") is True


# -- conversations -------------------------------------------------------------


async def test_conversation_operations(bridge: ChatBridge, ctx: AppContext) -> None:
    await bridge.send_prompt("Invoice for March")
    conv_id = ctx.chat.get("current_conversation_id")

    listed = bridge.get_all_conversations()
    assert listed[0]["id"] == conv_id
    assert listed[0]["message_count"] == 2

    assert bridge.new_conversation() == "new"
    assert ctx.chat.get("current_conversation_id") is None

    loaded = bridge.load_conversation(conv_id)
    assert loaded["title"] == "Invoice for March"
    assert bridge.get_api_history()[0]["parts"][0]["text"] == "Invoice for March"

    assert [c["id"] for c in bridge.search_conversations("invoice")] == [conv_id]
    assert "Invoice for March" in bridge.export_conversation(conv_id, "md")
    assert '"total_conversations": 1' in bridge.export_all_data()

    deleted = await bridge.delete_conversation(conv_id)
    assert deleted.success and deleted.data is True
    assert bridge.load_conversation(conv_id) is None


async def test_add_message_returns_id(bridge: ChatBridge) -> None:
    result = await bridge.add_message("hello", "user")
    assert result.success
    assert isinstance(result.data, str)


async def test_run_cleanup_records_when_enabled(ctx: AppContext) -> None:
    bridge = ChatBridge(ctx)
    await bridge.set_auto_cleanup(True)

    result = await bridge.run_cleanup()

    assert result.success
    assert result.data == {"deleted_conversations": 0, "freed_space_mb": 0.0, "kept_recent": 0}
    assert ctx.config.get("last_cleanup_at") is not None


async def test_clear_all_data_and_storage_info(bridge: ChatBridge) -> None:
    await bridge.send_prompt("hello")
    assert bridge.get_storage_info()["total_conversations"] == 1

    assert (await bridge.clear_all_data()).success
    assert bridge.get_storage_info()["total_conversations"] == 0
