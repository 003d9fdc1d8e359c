"""AppContext: the stores, wired together once per process."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from deskmate.config import settings
from deskmate.store.chat_store import ChatStore
from deskmate.store.config_store import ConfigStore
from deskmate.store.registry import StoreRegistry
from deskmate.store.ui_store import UIStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from deskmate.store.models import CleanupResult

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Explicit handle on every store, passed to whatever needs state.

    The chat store receives the config store as its policy provider, so it
    never has to look anything up in the registry.
    """

    config: ConfigStore
    chat: ChatStore
    ui: UIStore
    registry: StoreRegistry

    @classmethod
    def create(cls, data_dir: Path | None = None, registry: StoreRegistry | None = None) -> AppContext:
        data_dir = data_dir or settings.data_dir
        registry = registry or StoreRegistry.get()
        config = registry.register_store("config", ConfigStore(data_dir))
        chat = registry.register_store("chat", ChatStore(policy=config, data_dir=data_dir))
        ui = registry.register_store("ui", UIStore(data_dir))
        return cls(config=config, chat=chat, ui=ui, registry=registry)

    async def start(self) -> None:
        """Load every store, then run a scheduled cleanup if one is due."""
        await self.registry.initialize_all()
        self.chat.set_current_model(self.config.get("selected_model"))
        await self.run_auto_cleanup_if_due()

    async def shutdown(self) -> None:
        """Flush every loaded store to disk, then drop all listeners.

        A store that never finished loading is not saved, so a failed start
        cannot overwrite its file with defaults.
        """
        stores = [store for store in self.registry.all_stores().values() if store.is_initialized()]
        try:
            await asyncio.gather(*(store.save() for store in stores))
        finally:
            self.registry.destroy_all()

    async def run_auto_cleanup_if_due(self) -> CleanupResult | None:
        if not self.config.should_run_auto_cleanup():
            return None
        result = await self.chat.smart_cleanup()
        await self.config.record_cleanup()
        return result

    def app_state(self) -> dict[str, Any]:
        return {
            "config": self.config.get_state(),
            "chat": self.chat.get_state(),
            "ui": self.ui.get_state(),
        }

    def subscribe_all(self, callback: Callable[[str, Any], None]) -> Callable[[], None]:
        """Call ``callback(store_name, state)`` after any store changes."""
        unsubscribers = [
            store.subscribe(lambda change, name=name: callback(name, change.new_state))
            for name, store in (("config", self.config), ("chat", self.chat), ("ui", self.ui))
        ]

        def unsubscribe_all() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return unsubscribe_all
