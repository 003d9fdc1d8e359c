"""StoreRegistry: process-wide directory of named stores."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from deskmate.store.base import BaseStore

logger = logging.getLogger(__name__)

StoreT = TypeVar("StoreT", bound="BaseStore[Any]")


class StoreRegistry:
    """Single lifecycle choke point for every store.

    Singleton accessed via ``StoreRegistry.get()``.
    """

    _instance: StoreRegistry | None = None

    def __init__(self) -> None:
        self._stores: dict[str, BaseStore[Any]] = {}

    @classmethod
    def get(cls) -> StoreRegistry:
        """Return the singleton instance, creating it if needed."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton. Tests only."""
        cls._instance = None

    def register_store(self, name: str, store: StoreT) -> StoreT:
        """Add *store* under *name* and return it unchanged."""
        if name in self._stores:
            logger.warning("Replacing registered store '%s'", name)
        self._stores[name] = store
        return store

    def get_store(self, name: str) -> BaseStore[Any] | None:
        return self._stores.get(name)

    def all_stores(self) -> dict[str, BaseStore[Any]]:
        return dict(self._stores)

    async def initialize_all(self) -> None:
        """Initialize every store concurrently.

        The first failure propagates; loads already in flight are left to
        finish on their own.
        """
        logger.info("Initializing stores: %s", ", ".join(self._stores))
        try:
            await asyncio.gather(*(store.initialize() for store in self._stores.values()))
        except Exception:
            logger.exception("Store initialization failed")
            raise
        logger.info("All stores initialized")

    def destroy_all(self) -> None:
        logger.info("Destroying stores")
        for store in self._stores.values():
            store.destroy()
        self._stores.clear()
