"""ChatBridge: the operations the window and settings UI call.

Transport-agnostic: the desktop shell maps its IPC channels one-to-one onto
these methods.  Reads return plain JSON-ready values; anything that writes
to disk returns a ``BridgeResult`` so a failed save reaches the UI as an
error instead of an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from deskmate.llm.client import ApiError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from deskmate.context import AppContext
    from deskmate.llm.client import TextGenerator
    from deskmate.store.chat_store import ExportFormat
    from deskmate.store.models import CleanupSchedule, Role, ThemeName

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = (
    "Error: no API key is configured. Open the settings window and add your Gemini key."
)


@dataclass
class BridgeResult:
    """Outcome of a bridge operation that may fail."""

    data: Any = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class ChatBridge:
    """Boundary between the UI layer and the stores."""

    def __init__(self, context: AppContext, generator: TextGenerator | None = None) -> None:
        self._ctx = context
        self._generator = generator

    async def _guard(self, action: str, op: Awaitable[Any]) -> BridgeResult:
        try:
            return BridgeResult(data=await op)
        except Exception as exc:
            logger.exception("%s failed", action)
            return BridgeResult(error=f"{action} failed: {exc}")

    # -- Credentials and configuration -----------------------------------------

    def get_api_key(self) -> str:
        return self._ctx.config.get_api_key()

    async def set_api_key(self, api_key: str) -> BridgeResult:
        return await self._guard("Saving API key", self._ctx.config.set_api_key(api_key))

    def get_config(self) -> dict[str, Any]:
        return self._ctx.config.get_state().model_dump(mode="json")

    def get_ui_state(self) -> dict[str, Any]:
        return self._ctx.ui.get_state().model_dump(mode="json")

    async def set_theme(self, theme: ThemeName) -> BridgeResult:
        async def apply() -> None:
            await self._ctx.ui.set_theme(theme)
            await self._ctx.config.set_theme(theme)

        return await self._guard("Changing theme", apply())

    # -- Privacy ---------------------------------------------------------------

    def get_privacy_settings(self) -> dict[str, Any]:
        return self._ctx.config.get_privacy_settings().model_dump()

    async def set_incognito_mode(self, enabled: bool) -> BridgeResult:
        return await self._guard("Setting incognito mode", self._ctx.config.set_incognito_mode(enabled))

    async def set_data_retention(self, days: int) -> BridgeResult:
        return await self._guard("Setting data retention", self._ctx.config.set_data_retention(days))

    async def set_auto_cleanup(self, enabled: bool, schedule: CleanupSchedule | None = None) -> BridgeResult:
        return await self._guard("Setting auto cleanup", self._ctx.config.set_auto_cleanup(enabled, schedule))

    async def run_cleanup(self) -> BridgeResult:
        async def cleanup() -> dict[str, Any]:
            result = await self._ctx.chat.smart_cleanup()
            if self._ctx.config.get("auto_cleanup_enabled"):
                await self._ctx.config.record_cleanup()
            return result.model_dump()

        return await self._guard("Cleanup", cleanup())

    async def clear_all_data(self) -> BridgeResult:
        return await self._guard("Clearing chat data", self._ctx.chat.clear_all_data())

    def get_storage_info(self) -> dict[str, Any]:
        return self._ctx.chat.get_storage_info().model_dump(mode="json")

    def export_all_data(self) -> str:
        return self._ctx.chat.export_all_data()

    # -- Conversations ---------------------------------------------------------

    def get_all_conversations(self) -> list[dict[str, Any]]:
        return [view.model_dump(mode="json") for view in self._ctx.chat.get_all_conversations()]

    def load_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        conv = self._ctx.chat.load_conversation(conversation_id)
        return conv.model_dump(mode="json") if conv else None

    async def delete_conversation(self, conversation_id: str) -> BridgeResult:
        return await self._guard("Deleting conversation", self._ctx.chat.delete_conversation(conversation_id))

    def search_conversations(self, query: str) -> list[dict[str, Any]]:
        return [view.model_dump(mode="json") for view in self._ctx.chat.search_conversations(query)]

    def export_conversation(self, conversation_id: str, fmt: ExportFormat = "json") -> str | None:
        return self._ctx.chat.export_conversation(conversation_id, fmt)

    def new_conversation(self) -> str:
        self._ctx.chat.clear_current_conversation()
        return "new"

    # -- Messages --------------------------------------------------------------

    async def add_message(self, content: str, role: Role, model: str | None = None) -> BridgeResult:
        return await self._guard("Recording message", self._ctx.chat.add_message(content, role, model))

    def get_api_history(self) -> list[dict[str, Any]]:
        return self._ctx.chat.get_api_history()

    def set_processing(self, is_processing: bool) -> None:
        self._ctx.chat.set_processing(is_processing)
        self._ctx.ui.set_processing(is_processing)

    async def send_prompt(self, prompt: str, image: str | None = None) -> BridgeResult:
        """Ask the model and record both sides of the exchange.

        The user's message is recorded before the call; if that save fails
        the model is never asked.  A failed call records an assistant-role
        error message so the history still reads as a complete exchange.
        ``data`` holds the reply whenever the model produced one, even if
        recording it failed.
        """
        if self._generator is None or not self.get_api_key():
            return BridgeResult(error=MISSING_KEY_MESSAGE)

        model = self._ctx.config.get("selected_model")
        self.set_processing(True)
        try:
            history = self._ctx.chat.get_api_history()
            recorded = await self.add_message(prompt, "user", model)
            if not recorded.success:
                return recorded
            try:
                reply = await self._generator.generate(prompt, image, history)
            except ApiError as exc:
                logger.exception("Language model call failed")
                error = f"Error: could not get a response from the model. {exc}"
                recorded = await self.add_message(error, "assistant", model)
                return BridgeResult(error=error if recorded.success else f"{error} {recorded.error}")
            recorded = await self.add_message(reply, "assistant", model)
            return BridgeResult(data=reply, error=recorded.error)
        finally:
            self.set_processing(False)
